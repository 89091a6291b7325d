"""Error reporting"""

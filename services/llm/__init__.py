"""Language-model services"""

"""Per-business configuration"""

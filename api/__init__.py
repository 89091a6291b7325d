"""HTTP layer for AI Phone Receptionist"""

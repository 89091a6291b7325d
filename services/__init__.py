"""Services for AI Phone Receptionist"""

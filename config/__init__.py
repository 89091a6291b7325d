"""Configuration for AI Phone Receptionist"""

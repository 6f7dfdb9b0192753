"""Authentication and session core"""

"""
POS Sales Analytics
"""

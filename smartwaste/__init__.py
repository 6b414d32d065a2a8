"""
Smart waste collection backend
"""

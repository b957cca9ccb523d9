"""
Image analysis modules for photoindex
"""

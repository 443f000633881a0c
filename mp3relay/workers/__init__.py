"""
Background workers running inside the API process
"""

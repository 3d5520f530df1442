"""
Processing engines behind the fastml API.
"""

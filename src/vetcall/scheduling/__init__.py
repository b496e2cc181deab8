"""
Delayed job scheduling over the durable queue and the execution endpoints.
"""

"""
Metrics Federation Service package.

Resolves the instances of one Cloud Foundry application, fetches each
instance's Prometheus metrics through the instance-routing header, relabels
them with their origin and serves the merged document on `/prometheus`.
"""

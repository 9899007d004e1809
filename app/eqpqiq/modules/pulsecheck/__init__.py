"""
Pulse Check (provider performance).

Medical directors rate the physicians and APCs in their departments once per
rating cycle; reports roll completion and scores up to department and site.
"""

"""
LectGen quota and tier enforcement service.
"""

"""
tutorspace command line interface.
"""

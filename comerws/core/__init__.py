"""
Query units, input distribution and external tool invocations.
"""

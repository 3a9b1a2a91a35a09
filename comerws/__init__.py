"""
comerws: compute backend of the COMER/COTHER homology search web service.
"""

__version__ = "1.0.0"

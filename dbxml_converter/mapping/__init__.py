"""
Mapping module: table forest construction and schema inference.
"""

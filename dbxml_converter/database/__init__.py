"""
Database module: pyodbc-backed DatabaseInterface and bulk insert strategy.
"""

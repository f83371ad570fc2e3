"""
Utility modules.

    - text.py: Text sanitizing for synthesis and subtitle timestamps
"""

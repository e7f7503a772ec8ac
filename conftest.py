"""
conftest.py - global pytest configuration.
Puts the project root on sys.path so `import pxcore` works without installing.
"""
import sys
import os

sys.path.insert(0, os.path.dirname(__file__))

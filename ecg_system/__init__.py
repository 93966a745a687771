"""
ECG System
Single-lead ECG capture: device binding, recording lifecycle, session
persistence and AI summaries
"""

__version__ = '1.0.0'

"""
MediLink - Emergency Response Tracker

Live tracking core of the MediLink patient/provider portal: follows a single
emergency request from dispatch to arrival, reconciling status and ambulance
location updates from the MediLink backend into one consistent record.
"""

__version__ = "1.0.0"
__author__ = "MediLink Development Team"

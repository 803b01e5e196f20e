"""
Utility helpers - money and date arithmetic shared by the services.
"""

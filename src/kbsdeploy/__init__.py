"""
Deploys the Key Broker Service of Confidential Containers onto Kubernetes for integration testing.
"""

__version__ = "0.1.0"

"""
P6/EBS: Primavera P6 <-> Oracle EBS Integration
===============================================

Reconciliation and synchronization core for project, activity, resource
and WBS data kept in Primavera P6 and Oracle E-Business Suite.

The integration core lives in ``p6ebs.integration``; the exception
hierarchy in ``p6ebs.exceptions``.
"""

__version__ = "1.0.0"

__author__ = "P6/EBS Integration Team"
__license__ = "MIT"

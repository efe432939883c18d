"""Core Business Logic Module

Module Structure:
    - jumpcloud/ : JumpCloud API client, reconciliation protocol and
                   resource modules

Import explicitly when needed:
    from jcprovider.core.jumpcloud import JumpCloudClient, ResourceService
"""

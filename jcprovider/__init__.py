"""JumpCloud Provider Package.

To use the request dispatcher:
    from jcprovider.core.jumpcloud import JumpCloudClient

To reconcile resources:
    from jcprovider.core.jumpcloud import UserGroupService, ScimServerService

To load configuration:
    from jcprovider.config import load_settings
"""

__version__ = "0.1.0"

from pydio_boot.bootstrap import BootPhase, BootstrapCoordinator, SessionHandoff
from pydio_boot.config import ClientConfig, load_client_config
from pydio_boot.document import HostDocument
from pydio_boot.home import ClientPaths, ensure_client_layout, resolve_client_home
from pydio_boot.params import ParameterStore
from pydio_boot.session import ClientContext
from pydio_boot.tokens import TokenStore
from pydio_boot.transport import ParsedResponse, TransportClient, update_server_access

__version__ = "0.1.0"

__all__ = [
    "BootPhase",
    "BootstrapCoordinator",
    "ClientConfig",
    "ClientContext",
    "ClientPaths",
    "HostDocument",
    "ParameterStore",
    "ParsedResponse",
    "SessionHandoff",
    "TokenStore",
    "TransportClient",
    "__version__",
    "ensure_client_layout",
    "load_client_config",
    "resolve_client_home",
    "update_server_access",
]

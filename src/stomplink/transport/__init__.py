from .base import BaseTransport
from .protocol import StompStreamProtocol
from .tcp import TcpTransport

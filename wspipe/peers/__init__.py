"""
Built-in specifier classes. Importing this package registers all of them;
the registry is closed after that.

Leaves:    tcp, tcp-l, unix, unix-l, udp, udp-l, stdio, mirror, literal,
           clogged, readfile, writefile, appendfile, exec, sh-c, ws://, wss://
Overlays:  ws-upgrade, ws-c, reuse-raw, broadcast, autoreconnect, line2msg,
           msg2line
"""
from . import broadcast, file, line, net, process, reconnect, reuse, stdio, trivial, udp, ws  # noqa: F401

__all__ = ["broadcast", "file", "line", "net", "process", "reconnect", "reuse", "stdio", "trivial", "udp", "ws"]

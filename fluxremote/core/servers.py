"""Server profile: everything needed to reach one Transmission daemon."""

import json
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Union


@dataclass
class ServerProfile:
    """Connection settings for a single server.

    Treated as immutable once handed to RpcSession.open(); swapping to a
    different profile always goes through a full reconnect.
    """
    name: str = ""
    address: str = ""
    port: int = 9091
    api_path: str = "/transmission/rpc"
    https: bool = False
    self_signed_certificate_enabled: bool = False
    self_signed_certificate: str = ""
    client_certificate_enabled: bool = False
    client_certificate: str = ""  # PEM, certificate and private key
    authentication: bool = False
    username: str = ""
    password: str = ""
    timeout: int = 30  # seconds
    update_interval: int = 5
    background_update_interval: int = 60

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> 'ServerProfile':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'ServerProfile':
        with open(path, 'r', encoding='utf-8') as f:
            return cls.from_dict(json.load(f))

"""
Оркестратор выпуска ijazah: леджер, кластер хранения и локальные файлы.
"""

from .service import IjazahService, create_ijazah_service, generate_ijazah_id
from .models import (
    Ijazah, IjazahFields, IjazahInput, IjazahUpdate, IjazahResponse, IjazahStatus,
    Signature, SignatureInput, Mahasiswa, Organization,
)
from .fabric import FabricGateway, TokenStore
from .cluster import IpfsClusterClient
from .storage import FileStorage
from .renderer import CertificateRenderer
from .roster import StudentRoster
from .saga import Saga, SagaStep

__version__ = "1.0.0"

__all__ = [
    'IjazahService',
    'create_ijazah_service',
    'generate_ijazah_id',
    'Ijazah',
    'IjazahFields',
    'IjazahInput',
    'IjazahUpdate',
    'IjazahResponse',
    'IjazahStatus',
    'Signature',
    'SignatureInput',
    'Mahasiswa',
    'Organization',
    'FabricGateway',
    'TokenStore',
    'IpfsClusterClient',
    'FileStorage',
    'CertificateRenderer',
    'StudentRoster',
    'Saga',
    'SagaStep'
]

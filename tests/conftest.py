"""
Общие фикстуры для тестов
"""
import io
import json
from unittest.mock import MagicMock

import pytest
from PIL import Image
from reportlab.pdfgen import canvas

from config.settings import Settings
from ijazah.cluster import IpfsClusterClient
from ijazah.exceptions import LedgerError
from ijazah.renderer import CertificateRenderer
from ijazah.roster import StudentRoster
from ijazah.service import IjazahService
from ijazah.storage import FileStorage

TEST_CID = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


def _make_png(size=(120, 160), color=(200, 30, 30)) -> bytes:
    """PNG изображение заданного размера"""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _make_template(path, fields=("nama", "nomorIndukMahasiswa", "programStudi", "tanggalLulus")):
    """PDF шаблон A4 (альбомный) с текстовыми полями формы"""
    c = canvas.Canvas(str(path), pagesize=(842, 595))
    c.drawString(40, 560, "IJAZAH")
    for index, name in enumerate(fields):
        c.acroForm.textfield(name=name, x=300, y=480 - index * 40, width=300, height=24)
    c.save()
    return path


class FakeLedger:
    """Чейнкод в памяти с интерфейсом FabricGateway"""

    def __init__(self):
        self.ijazah = {}
        self.signatures = {}
        self.calls = []
        self.fail_methods = {}
        self.missing_message = "500: The {kind} {id} does not exist"

    async def invoke(self, organization, token, method, args=None, channel=None, contract=None):
        return self._call("invoke", method, list(args or []))

    async def query(self, organization, token, method, args=None, channel=None, contract=None):
        return self._call("query", method, list(args or []))

    async def start(self):
        pass

    async def close(self):
        pass

    async def health_check(self):
        return {"akademik": True, "rektor": True}

    def methods(self):
        return [method for _, method, _ in self.calls]

    def _call(self, kind, method, args):
        self.calls.append((kind, method, args))
        if method in self.fail_methods:
            raise LedgerError(self.fail_methods[method])
        return getattr(self, f"_{method}")(*args)

    def _missing(self, kind, record_id):
        raise LedgerError(self.missing_message.format(kind=kind, id=record_id))

    def _CreateIjazah(self, payload):
        record = json.loads(payload)
        self.ijazah[record["ID"]] = record
        return json.dumps(record)

    def _ReadIjazah(self, ijazah_id):
        if ijazah_id not in self.ijazah:
            self._missing("ijazah", ijazah_id)
        return json.dumps(self.ijazah[ijazah_id])

    def _UpdateIjazah(self, payload):
        record = json.loads(payload)
        if record["ID"] not in self.ijazah:
            self._missing("ijazah", record["ID"])
        self.ijazah[record["ID"]] = record
        return json.dumps(record)

    def _UpdateIjazahStatus(self, ijazah_id, status):
        if ijazah_id not in self.ijazah:
            self._missing("ijazah", ijazah_id)
        self.ijazah[ijazah_id]["Status"] = status
        return json.dumps(self.ijazah[ijazah_id])

    def _DeleteIjazah(self, ijazah_id):
        if ijazah_id not in self.ijazah:
            self._missing("ijazah", ijazah_id)
        del self.ijazah[ijazah_id]
        return ""

    def _GetAllIjazah(self):
        return json.dumps(list(self.ijazah.values()))

    def _CreateSignature(self, payload):
        record = json.loads(payload)
        record.setdefault("IsActive", False)
        record["Type"] = "signature"
        self.signatures[record["ID"]] = record
        return json.dumps(record)

    def _UpdateSignature(self, payload):
        record = json.loads(payload)
        if record["ID"] not in self.signatures:
            self._missing("signature", record["ID"])
        self.signatures[record["ID"]].update(record)
        return json.dumps(self.signatures[record["ID"]])

    def _ReadSignature(self, signature_id):
        if signature_id not in self.signatures:
            self._missing("signature", signature_id)
        return json.dumps(self.signatures[signature_id])

    def _GetActiveSignature(self):
        for record in self.signatures.values():
            if record.get("IsActive"):
                return json.dumps(record)
        return ""

    def _GetAllSignatures(self):
        return json.dumps(list(self.signatures.values()))

    def _SetActiveSignature(self, signature_id):
        if signature_id not in self.signatures:
            self._missing("signature", signature_id)
        for record in self.signatures.values():
            record["IsActive"] = record["ID"] == signature_id
        return json.dumps(self.signatures[signature_id])

    def _DeleteSignature(self, signature_id):
        if signature_id not in self.signatures:
            self._missing("signature", signature_id)
        del self.signatures[signature_id]
        return ""


@pytest.fixture
def make_png():
    """Фабрика PNG изображений"""
    return _make_png


@pytest.fixture
def make_template():
    """Фабрика PDF шаблонов"""
    return _make_template


@pytest.fixture
def settings(tmp_path):
    """Настройки с путями во временной директории"""
    return Settings(
        uploads_dir=tmp_path / "uploads",
        certificate_template=_make_template(tmp_path / "template.pdf"),
        student_roster=tmp_path / "mahasiswa.json",
        log_file=tmp_path / "logs" / "test.log",
        ipfs_gateway_url="http://gateway.test",
    )


@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path / "uploads")


@pytest.fixture
def photo_bytes():
    return _make_png((300, 400), (20, 120, 200))


@pytest.fixture
def signature_bytes():
    return _make_png((400, 160), (10, 10, 10))


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def cluster():
    """Мок клиента кластера с закреплением по умолчанию"""
    mock = MagicMock(spec=IpfsClusterClient)
    mock.add.return_value = {"cid": TEST_CID, "url": f"http://gateway.test/ipfs/{TEST_CID}"}
    mock.pin.return_value = True
    mock.unpin.return_value = True
    mock.info.return_value = {"id": "12D3KooW"}
    mock.gateway_url.side_effect = lambda cid: f"http://gateway.test/ipfs/{cid}"
    return mock


@pytest.fixture
def roster():
    return StudentRoster(records=[
        {"nomorIndukMahasiswa": "12345678901", "nama": "Jane Doe", "programStudi": "Informatika"},
    ])


@pytest.fixture
def service(ledger, cluster, storage, settings, roster):
    return IjazahService(
        gateway=ledger,
        cluster=cluster,
        storage=storage,
        renderer=CertificateRenderer(settings.certificate_template),
        roster=roster,
        settings=settings
    )


@pytest.fixture
def active_signature(ledger, storage, signature_bytes):
    """Активная подпись sig_1 с файлом в хранилище"""
    filename = storage.save_signature(signature_bytes, "signature_sig_1_1700000000000.png")
    ledger.signatures["sig_1"] = {
        "ID": "sig_1",
        "Type": "signature",
        "filePath": filename,
        "IsActive": True,
    }
    return ledger.signatures["sig_1"]

"""
CLI интерфейс для сопровождения сервиса ijazah
"""
import argparse
import asyncio
import json
import logging
import sys

from config import get_settings, setup_logging
from ijazah import IjazahService, create_ijazah_service
from ijazah.exceptions import IjazahError


class IjazahCLI:
    """CLI интерфейс для мониторинга кластера и справочника"""

    def __init__(self, settings=None, service: IjazahService = None):
        self.settings = settings or get_settings()
        setup_logging(self.settings)
        self.logger = logging.getLogger(__name__)
        self.service = service or create_ijazah_service(self.settings)

    @property
    def cluster(self):
        return self.service.cluster

    @staticmethod
    def _print_json(data):
        print(json.dumps(data, indent=2, ensure_ascii=False, default=str))

    async def health(self, args) -> int:
        """Сводная проверка подсистем"""
        await self.service.gateway.start()
        health = await self.service.health_check()

        print("✓ Система работает" if health["overall"] else "✗ Система неисправна")
        for organization, healthy in health["fabric"].items():
            print(f"  Леджер ({organization}): {'✓' if healthy else '✗'}")
        print(f"  IPFS Cluster: {'✓' if health['ipfs'] else '✗'}")
        print(f"  Локальное хранилище: {'✓' if health['localStorage'] else '✗'}")

        return 0 if health["overall"] else 1

    async def stats(self, args) -> int:
        """Статистика локального хранилища"""
        stats = self.service.storage.get_storage_stats()
        print("Локальное хранилище:")
        for kind, values in stats.items():
            print(f"  {kind}: {values['count']} файлов, {values['totalSize']} байт")
        return 0

    async def pins(self, args) -> int:
        """Список закрепленных CID"""
        pins = await self.cluster.list_pins()
        if not pins:
            print("  Закрепленные CID не найдены")
            return 0

        for pin in pins:
            print(f"  {pin.get('cid', pin)}")
        return 0

    async def pin_status(self, args) -> int:
        """Статус закрепления CID"""
        status = await self.cluster.status(args.cid)
        if status is None:
            print(f"✗ CID {args.cid} не найден в кластере")
            return 1

        self._print_json(status)
        return 0

    async def recover(self, args) -> int:
        """Восстановление CID"""
        if await self.cluster.recover(args.cid):
            print(f"✓ Восстановление CID {args.cid} запущено")
            return 0

        print(f"✗ Кластер отклонил восстановление CID {args.cid}")
        return 1

    async def peers(self, args) -> int:
        """Узлы кластера"""
        peers = await self.cluster.get_peers()
        print(f"Узлов в кластере: {len(peers)}")
        for peer in peers:
            print(f"  {peer.get('id')} {peer.get('peername', '')}")
        return 0

    async def alerts(self, args) -> int:
        """Предупреждения о здоровье кластера"""
        alerts = await self.cluster.get_health_alerts()
        if not alerts:
            print("✓ Предупреждений нет")
            return 0

        self._print_json(alerts)
        return 0

    async def find_nim(self, args) -> int:
        """Поиск студента по NIM"""
        mahasiswa = self.service.find_mahasiswa_by_nim(args.nim)
        if mahasiswa is None:
            print(f"✗ Студент с NIM {args.nim} не найден")
            return 1

        print("✓ Студент найден:")
        print(f"  NIM: {mahasiswa.nomor_induk_mahasiswa}")
        print(f"  Имя: {mahasiswa.nama}")
        if mahasiswa.program_studi:
            print(f"  Программа: {mahasiswa.program_studi}")
        if mahasiswa.fakultas:
            print(f"  Факультет: {mahasiswa.fakultas}")
        return 0

    async def run(self, args) -> int:
        """Выполнение команды с закрытием HTTP клиентов"""
        handler = getattr(self, args.command.replace('-', '_'))
        try:
            return await handler(args)
        except IjazahError as e:
            print(f"✗ Ошибка: {e}")
            self.logger.error(f"Ошибка команды {args.command}: {e}")
            return 1
        finally:
            await self.service.gateway.close()
            await self.cluster.close()

    @staticmethod
    def build_parser() -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Сопровождение сервиса ijazah",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Примеры использования:
  %(prog)s health
  %(prog)s pin-status bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi
  %(prog)s find-nim 12345678901
            """
        )

        subparsers = parser.add_subparsers(dest='command', help='Доступные команды')

        subparsers.add_parser('health', help='Проверка подсистем')
        subparsers.add_parser('stats', help='Статистика локального хранилища')
        subparsers.add_parser('pins', help='Список закрепленных CID')

        status_parser = subparsers.add_parser('pin-status', help='Статус закрепления CID')
        status_parser.add_argument('cid', help='CID контента')

        recover_parser = subparsers.add_parser('recover', help='Восстановление CID')
        recover_parser.add_argument('cid', help='CID контента')

        subparsers.add_parser('peers', help='Узлы кластера')
        subparsers.add_parser('alerts', help='Предупреждения кластера')

        nim_parser = subparsers.add_parser('find-nim', help='Поиск студента по NIM')
        nim_parser.add_argument('nim', help='NIM студента')

        return parser

    def main(self, argv=None) -> int:
        """Главная функция CLI"""
        parser = self.build_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 0

        return asyncio.run(self.run(args))


if __name__ == '__main__':
    cli = IjazahCLI()
    sys.exit(cli.main())

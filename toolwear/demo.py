"""Fixed demonstration dataset for the in-memory store."""

from __future__ import annotations

import logging
from datetime import timedelta

from .domain import FailureSeverity, UserRole
from .services import ToolTrackingService

logger = logging.getLogger(__name__)

DEMO_ADMIN_NAME = "Administrador"
DEMO_ADMIN_CPF = "12345678909"
DEMO_ADMIN_PASSWORD = "admin123!"


def ensure_demo_data(service: ToolTrackingService) -> None:
    if service.tools.list():
        return

    now = service.now()

    admin = service.register_user(
        DEMO_ADMIN_NAME, DEMO_ADMIN_CPF, DEMO_ADMIN_PASSWORD, role=UserRole.OWNER
    )

    end_mill = service.create_tool(
        "T-100",
        "Fresa 10mm",
        brand="Korloy",
        type="Fresa de topo",
        diameter=10.0,
        length=72.0,
        material="Metal duro",
        coating="TiAlN",
        max_rpm=12000,
        cutting_edges=4,
    )
    drill = service.create_tool(
        "T-200",
        "Broca 5mm",
        brand="Dormer",
        type="Broca helicoidal",
        diameter=5.0,
        length=86.0,
        material="HSS-Co",
        coating="TiN",
        max_rpm=6000,
        cutting_edges=2,
    )
    service.create_tool(
        "T-300",
        "Pastilha CNMG 120408",
        brand="Sandvik",
        type="Pastilha de torneamento",
        material="Metal duro",
        coating="CVD",
        cutting_edges=4,
        notes="Reserva do torno 02",
    )

    service.record_production(
        end_mill.id, "Centro de Usinagem 01", 1200, entry_datetime=now - timedelta(days=3)
    )
    service.record_production(
        end_mill.id, "Centro de Usinagem 01", 900, entry_datetime=now - timedelta(days=2)
    )
    service.report_failure(
        end_mill.id,
        operator_id=admin.id,
        reason="Quebra de aresta",
        severity=FailureSeverity.HIGH,
        failure_datetime=now - timedelta(days=1),
        failure_type="Quebra",
        machine="Centro de Usinagem 01",
        action_taken="Ferramenta substituída",
        maintenance_required=True,
    )
    service.record_production(
        end_mill.id, "Centro de Usinagem 01", 300, entry_datetime=now - timedelta(hours=12)
    )

    service.record_production(drill.id, "Furadeira 02", 4200, entry_datetime=now - timedelta(days=4))
    service.record_production(drill.id, "Furadeira 02", 1100, entry_datetime=now - timedelta(hours=6))

    logger.info("Seeded demonstration dataset")


__all__ = ["ensure_demo_data", "DEMO_ADMIN_CPF", "DEMO_ADMIN_PASSWORD"]

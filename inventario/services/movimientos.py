import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from django.db.models import Count, Sum
from django.utils import timezone

from inventario.conf import obtener_config
from inventario.models import EventoProduccion, MovimientoInventario

from .errores import ValidacionInventarioError
from .stock import CambioStock, ManejadorStock, obtener_manejador


def nuevo_correlacion_id() -> str:
    return uuid.uuid4().hex


def motivo_con_correlacion(motivo: str, correlacion_id: str | None) -> str:
    """
    Agrega el sufijo " - ID: <correlacion>" al motivo. La búsqueda se hace
    siempre por la columna correlacion_id; el sufijo es solo informativo.
    """
    motivo = (motivo or "").strip()
    if not correlacion_id:
        return motivo
    return f"{motivo} - ID: {correlacion_id}"


def correlacion_en_uso(correlacion_id: str) -> bool:
    return (
        MovimientoInventario.objects.filter(correlacion_id=correlacion_id).exists()
        or EventoProduccion.objects.filter(correlacion_id=correlacion_id).exists()
    )


def registrar_movimiento(
    *,
    manejador: ManejadorStock,
    item,
    cambio: CambioStock,
    tipo: str,
    subtipo: str,
    cantidad: Decimal,
    motivo: str,
    operador: str,
    correlacion_id: str | None = None,
    detalles: dict | None = None,
    revierte: MovimientoInventario | None = None,
    fecha=None,
) -> MovimientoInventario:
    """
    Escribe una entrada del libro a partir del cambio ya aplicado al item.
    Solo la usan las primitivas de débito/crédito y la reversión.
    """
    return MovimientoInventario.objects.create(
        tipo=tipo,
        subtipo=subtipo,
        tipo_item=manejador.tipo,
        item_id=manejador.clave(item),
        item_nombre=item.nombre,
        cantidad=cantidad,
        contador=cambio.contador,
        cantidad_anterior=cambio.anterior,
        cantidad_nueva=cambio.nuevo,
        disponible_anterior=cambio.disponible_anterior,
        disponible_nuevo=cambio.disponible_nuevo,
        motivo=motivo,
        operador=operador,
        fecha=fecha or timezone.now(),
        detalles=detalles or {},
        correlacion_id=correlacion_id,
        revierte=revierte,
    )


@dataclass
class PaginaMovimientos:
    movimientos: list[MovimientoInventario]
    total: int
    pagina: int
    limite: int

    @property
    def total_paginas(self) -> int:
        return (self.total + self.limite - 1) // self.limite


def _filtrar_fechas(qs, fecha_inicio=None, fecha_fin=None):
    if fecha_inicio is not None:
        if isinstance(fecha_inicio, datetime):
            qs = qs.filter(fecha__gte=fecha_inicio)
        elif isinstance(fecha_inicio, date):
            qs = qs.filter(fecha__date__gte=fecha_inicio)
        else:
            raise ValidacionInventarioError("fecha_inicio inválida.")
    if fecha_fin is not None:
        if isinstance(fecha_fin, datetime):
            qs = qs.filter(fecha__lte=fecha_fin)
        elif isinstance(fecha_fin, date):
            qs = qs.filter(fecha__date__lte=fecha_fin)
        else:
            raise ValidacionInventarioError("fecha_fin inválida.")
    return qs


def listar_movimientos(
    *,
    tipo_item: str | None = None,
    item_id: int | None = None,
    tipo: str | None = None,
    subtipo: str | None = None,
    operador: str | None = None,
    fecha_inicio: date | datetime | None = None,
    fecha_fin: date | datetime | None = None,
    correlacion_id: str | None = None,
    incluir_revertidos: bool = True,
    pagina: int = 1,
    limite: int = 50,
) -> PaginaMovimientos:
    """
    Historial de movimientos, más recientes primero.

    - operador: búsqueda parcial sin distinguir mayúsculas.
    - fechas: un `date` filtra por día completo, un `datetime` por instante.
    """
    config = obtener_config()
    if pagina < 1:
        raise ValidacionInventarioError("La página debe ser >= 1.")
    if limite < 1 or limite > config["LIMITE_PAGINA_MAXIMO"]:
        raise ValidacionInventarioError(
            f"El límite debe estar entre 1 y {config['LIMITE_PAGINA_MAXIMO']}."
        )

    qs = MovimientoInventario.objects.all()
    if tipo_item:
        qs = qs.filter(tipo_item=obtener_manejador(tipo_item).tipo)
    if item_id is not None:
        qs = qs.filter(item_id=item_id)
    if tipo:
        qs = qs.filter(tipo=tipo)
    if subtipo:
        qs = qs.filter(subtipo=subtipo)
    if operador:
        qs = qs.filter(operador__icontains=operador)
    if correlacion_id:
        qs = qs.filter(correlacion_id=correlacion_id)
    if not incluir_revertidos:
        qs = qs.filter(revertido=False)
    qs = _filtrar_fechas(qs, fecha_inicio, fecha_fin)

    total = qs.count()
    inicio = (pagina - 1) * limite
    movimientos = list(qs.order_by("-fecha", "-id")[inicio:inicio + limite])
    return PaginaMovimientos(movimientos=movimientos, total=total, pagina=pagina, limite=limite)


def obtener_estadisticas_movimientos(*, fecha_inicio=None, fecha_fin=None) -> dict:
    """
    Totales de movimientos por tipo de item y dirección, y conteo por subtipo.
    """
    qs = _filtrar_fechas(MovimientoInventario.objects.all(), fecha_inicio, fecha_fin)

    por_item: dict[str, dict] = {}
    filas = qs.values("tipo_item", "tipo").annotate(
        movimientos=Count("id"),
        cantidad=Sum("cantidad"),
    ).order_by()
    for fila in filas:
        por_item.setdefault(fila["tipo_item"], {})[fila["tipo"]] = {
            "movimientos": fila["movimientos"],
            "cantidad": fila["cantidad"] or Decimal("0"),
        }

    por_subtipo = {
        fila["subtipo"]: fila["movimientos"]
        for fila in qs.values("subtipo").annotate(movimientos=Count("id")).order_by()
    }

    return {
        "total_movimientos": qs.count(),
        "revertidos": qs.filter(revertido=True).count(),
        "por_item": por_item,
        "por_subtipo": por_subtipo,
    }


def obtener_detalle_item(*, tipo_item: str, item_id: int, limite: int = 20) -> dict:
    """
    Devuelve el item, su disponible actual y sus últimos movimientos.
    """
    manejador = obtener_manejador(tipo_item)
    item = manejador.obtener(item_id, incluir_inactivos=True)
    movimientos = list(
        MovimientoInventario.objects.filter(
            tipo_item=manejador.tipo,
            item_id=manejador.clave(item),
        ).order_by("-fecha", "-id")[:limite]
    )
    return {
        "item": item,
        "disponible": item.disponible,
        "movimientos": movimientos,
    }

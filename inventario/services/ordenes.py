"""
Órdenes de producción planificadas.

Una orden guarda la salida y los insumos de una producción para ejecutarla
más tarde. Ciclo: planificada -> completada (ejecutar) o cancelada
(cancelar). Eliminar una orden completada revierte su evento.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from inventario.models import EstadoEvento, EstadoOrden, EventoProduccion, OrdenProduccion

from .errores import ItemNoEncontrado, TransicionInvalida, ValidacionInventarioError
from .produccion import InsumoProduccion, SolicitudProduccion, normalizar_insumos, producir
from .reversion import ResultadoReversion, revertir_evento
from .stock import obtener_manejador, validar_cantidad, validar_operador

logger = logging.getLogger(__name__)


def _bloquear_orden(orden: OrdenProduccion) -> OrdenProduccion:
    try:
        return OrdenProduccion.objects.select_for_update().get(pk=orden.pk)
    except OrdenProduccion.DoesNotExist:
        raise ItemNoEncontrado("Orden de producción no encontrada.", orden_id=orden.pk)


@transaction.atomic
def planificar_produccion(
    *,
    nombre: str,
    tipo_salida: str,
    salida_id: int,
    cantidad: Decimal,
    operador: str,
    insumos=(),
    observaciones: str = "",
) -> OrdenProduccion:
    """
    Crea una orden en estado planificada. No mueve stock: la
    disponibilidad se verifica al ejecutarla.
    """
    operador = validar_operador(operador)
    nombre = (nombre or "").strip()
    if not nombre:
        raise ValidacionInventarioError("El nombre de la producción es obligatorio.")
    en_uso = (
        OrdenProduccion.objects.filter(nombre__iexact=nombre)
        .exclude(estado=EstadoOrden.CANCELADA)
        .exists()
    )
    if en_uso:
        raise ValidacionInventarioError(
            f"Ya existe una producción activa con el nombre '{nombre}'.",
            nombre=nombre,
        )

    cantidad = validar_cantidad(cantidad)
    manejador = obtener_manejador(tipo_salida)
    salida = manejador.obtener(salida_id)
    insumos = normalizar_insumos(insumos)

    orden = OrdenProduccion.objects.create(
        nombre=nombre,
        tipo_salida=manejador.tipo,
        salida_id=manejador.clave(salida),
        cantidad=cantidad,
        insumos=[
            {"tipo_item": i.tipo_item, "item_id": i.item_id, "cantidad": str(i.cantidad)}
            for i in insumos
        ],
        observaciones=observaciones,
        operador=operador,
    )
    logger.info("Orden de producción '%s' planificada por %s", nombre, operador)
    return orden


@transaction.atomic
def ejecutar_produccion(*, orden: OrdenProduccion, operador: str) -> OrdenProduccion:
    """
    Ejecuta una orden planificada con producir(). La orden y su evento se
    confirman juntos: si la producción falla, la orden sigue planificada.
    """
    operador = validar_operador(operador)
    orden = _bloquear_orden(orden)
    if orden.estado != EstadoOrden.PLANIFICADA:
        raise TransicionInvalida(
            "Solo se pueden ejecutar producciones planificadas.",
            orden_id=orden.pk,
            estado=orden.estado,
        )

    resultado = producir(
        SolicitudProduccion(
            tipo_salida=orden.tipo_salida,
            salida_id=orden.salida_id,
            cantidad=orden.cantidad,
            operador=operador,
            insumos=[
                InsumoProduccion(
                    tipo_item=insumo["tipo_item"],
                    item_id=insumo["item_id"],
                    cantidad=Decimal(insumo["cantidad"]),
                )
                for insumo in orden.insumos
            ],
            motivo=f"Producción {orden.nombre}",
        )
    )

    orden.estado = EstadoOrden.COMPLETADA
    orden.correlacion_id = resultado.correlacion_id
    orden.ejecutada_por = operador
    orden.fecha_ejecucion = timezone.now()
    orden.save(update_fields=["estado", "correlacion_id", "ejecutada_por", "fecha_ejecucion", "updated_at"])
    return orden


@transaction.atomic
def cancelar_produccion(*, orden: OrdenProduccion, motivo: str, operador: str) -> OrdenProduccion:
    operador = validar_operador(operador)
    motivo = (motivo or "").strip()
    if not motivo:
        raise ValidacionInventarioError("El motivo de la cancelación es obligatorio.")

    orden = _bloquear_orden(orden)
    if orden.estado != EstadoOrden.PLANIFICADA:
        raise TransicionInvalida(
            f"No se puede cancelar una producción {orden.get_estado_display().lower()}.",
            orden_id=orden.pk,
            estado=orden.estado,
        )

    cancelacion = f"Cancelada por {operador}: {motivo}"
    orden.observaciones = f"{orden.observaciones} | {cancelacion}" if orden.observaciones else cancelacion
    orden.estado = EstadoOrden.CANCELADA
    orden.save(update_fields=["estado", "observaciones", "updated_at"])
    logger.info("Orden de producción '%s' cancelada por %s", orden.nombre, operador)
    return orden


@transaction.atomic
def eliminar_produccion(*, orden: OrdenProduccion, operador: str) -> ResultadoReversion | None:
    """
    Elimina una orden. Si estaba completada, antes revierte su evento
    (devuelve el resultado de la reversión).
    """
    operador = validar_operador(operador)
    orden = _bloquear_orden(orden)

    resultado = None
    if orden.estado == EstadoOrden.COMPLETADA:
        revertido = EventoProduccion.objects.filter(
            correlacion_id=orden.correlacion_id,
            estado=EstadoEvento.REVERTIDO,
        ).exists()
        if not revertido:
            resultado = revertir_evento(
                correlacion_id=orden.correlacion_id,
                operador=operador,
                motivo=f"Eliminación de producción {orden.nombre}",
            )

    logger.info("Orden de producción '%s' (%s) eliminada por %s", orden.nombre, orden.estado, operador)
    orden.delete()
    return resultado

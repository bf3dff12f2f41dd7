import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from inventario.conf import obtener_config
from inventario.models import (
    EstadoEvento,
    EstadoOrden,
    EventoProduccion,
    MovimientoInventario,
    OrdenProduccion,
    Residuo,
)

from .errores import (
    ItemNoEncontrado,
    MovimientoNoReversible,
    NadaQueRevertir,
    ValidacionInventarioError,
)
from .movimientos import motivo_con_correlacion, nuevo_correlacion_id, registrar_movimiento
from .stock import obtener_manejador, validar_operador

logger = logging.getLogger(__name__)


@dataclass
class ResultadoReversion:
    correlacion_id: str | None
    correlacion_revertida: str | None
    compensaciones: list[MovimientoInventario]
    originales: list[int]
    # Item restituido (solo en la reversión de un movimiento individual)
    item: object = None


def _compensar(
    movimiento: MovimientoInventario,
    *,
    operador: str,
    motivo: str,
    correlacion_id: str | None,
) -> tuple[object, MovimientoInventario]:
    """
    Aplica el cambio inverso al contador que movió `movimiento` y escribe el
    movimiento compensatorio. Devuelve (item, compensación).

    Si el item ya no tiene disponible suficiente para deshacer una entrada,
    se revierte solo lo disponible (nunca queda en negativo).
    """
    manejador = obtener_manejador(movimiento.tipo_item)
    try:
        item = manejador.obtener(movimiento.item_id, bloquear=True)
    except ItemNoEncontrado as exc:
        raise MovimientoNoReversible(
            f"No se puede revertir el movimiento #{movimiento.pk}: {exc.mensaje}",
            movimiento_id=movimiento.pk,
        ) from exc

    cambio_original = movimiento.cantidad_nueva - movimiento.cantidad_anterior
    efecto_original = manejador.efecto(movimiento.contador, cambio_original)
    signo = Decimal("-1") if cambio_original > 0 else Decimal("1")

    magnitud = abs(cambio_original)
    if efecto_original > 0:
        # Deshacer una entrada reduce lo disponible.
        magnitud = min(magnitud, max(item.disponible, Decimal("0")))
    if signo < 0:
        magnitud = min(magnitud, max(getattr(item, movimiento.contador), Decimal("0")))
    ajustado = magnitud != abs(cambio_original)

    cambio = manejador.mover(item, movimiento.contador, signo * magnitud)
    if cambio is None:
        raise MovimientoNoReversible(
            f"El stock de '{item.nombre}' cambió durante la reversión.",
            movimiento_id=movimiento.pk,
        )

    if ajustado:
        logger.warning(
            "Reversión ajustada de '%s' (movimiento #%s): solicitado %s, revertido %s",
            item.nombre,
            movimiento.pk,
            abs(cambio_original),
            magnitud,
        )

    compensacion = registrar_movimiento(
        manejador=manejador,
        item=item,
        cambio=cambio,
        tipo=(
            MovimientoInventario.TIPO_SALIDA
            if efecto_original > 0
            else MovimientoInventario.TIPO_ENTRADA
        ),
        subtipo=MovimientoInventario.SUBTIPO_REVERSION,
        cantidad=magnitud,
        motivo=motivo,
        operador=operador,
        correlacion_id=correlacion_id,
        detalles={
            "movimiento_original": movimiento.pk,
            "cantidad_original": str(movimiento.cantidad),
            "correlacion_revertida": movimiento.correlacion_id,
            "ajustado": ajustado,
        },
        revierte=movimiento,
    )
    return item, compensacion


def _cerrar_dependientes(correlacion_id: str) -> None:
    # Registros que dejan de tener efecto en stock con el evento
    Residuo.objects.filter(correlacion_id=correlacion_id, activo=True).update(
        activo=False,
        updated_at=timezone.now(),
    )
    OrdenProduccion.objects.filter(
        correlacion_id=correlacion_id,
        estado=EstadoOrden.COMPLETADA,
    ).update(estado=EstadoOrden.REVERTIDA, updated_at=timezone.now())


def _cerrar_originales(originales: list[MovimientoInventario]) -> None:
    ids = [m.pk for m in originales]
    if obtener_config()["CONSERVAR_MOVIMIENTOS_REVERTIDOS"]:
        ahora = timezone.now()
        MovimientoInventario.objects.filter(pk__in=ids).update(
            revertido=True,
            revertido_en=ahora,
            updated_at=ahora,
        )
        for movimiento in originales:
            movimiento.revertido = True
            movimiento.revertido_en = ahora
    else:
        MovimientoInventario.objects.filter(pk__in=ids).delete()


@transaction.atomic
def revertir_movimiento(*, movimiento_id: int, operador: str, motivo: str = "") -> ResultadoReversion:
    """
    Revierte una ENTRADA manual individual.

    Las salidas y los movimientos que pertenecen a un evento correlacionado
    se revierten con revertir_evento().
    """
    operador = validar_operador(operador)
    try:
        movimiento = MovimientoInventario.objects.select_for_update().get(pk=movimiento_id)
    except (MovimientoInventario.DoesNotExist, ValueError, TypeError):
        raise ItemNoEncontrado(f"No existe el movimiento {movimiento_id}.", movimiento_id=movimiento_id)

    if movimiento.tipo != MovimientoInventario.TIPO_ENTRADA:
        raise MovimientoNoReversible(
            "Solo se pueden revertir movimientos de entrada.",
            movimiento_id=movimiento.pk,
            tipo=movimiento.tipo,
        )
    if movimiento.es_reversion:
        raise MovimientoNoReversible(
            "Un movimiento de reversión no se puede revertir.",
            movimiento_id=movimiento.pk,
        )
    if movimiento.revertido:
        raise MovimientoNoReversible(
            "El movimiento ya fue revertido.",
            movimiento_id=movimiento.pk,
        )
    if movimiento.correlacion_id:
        raise MovimientoNoReversible(
            "El movimiento pertenece a un evento; revierta el evento completo.",
            movimiento_id=movimiento.pk,
            correlacion_id=movimiento.correlacion_id,
        )

    item, compensacion = _compensar(
        movimiento,
        operador=operador,
        motivo=motivo or f"Reversión por eliminación de movimiento: {movimiento.motivo}",
        correlacion_id=None,
    )
    _cerrar_originales([movimiento])

    logger.info(
        "Movimiento #%s revertido por %s (compensación #%s)",
        movimiento_id,
        operador,
        compensacion.pk,
    )
    return ResultadoReversion(
        correlacion_id=None,
        correlacion_revertida=None,
        compensaciones=[compensacion],
        originales=[movimiento_id],
        item=item,
    )


@transaction.atomic
def revertir_evento(
    *,
    correlacion_id: str,
    operador: str,
    motivo: str = "",
    forzar: bool = False,
) -> ResultadoReversion:
    """
    Revierte todos los movimientos de un evento correlacionado.

    - Salidas del evento (créditos de receta / producto): se descuenta lo
      producido, limitado a lo disponible.
    - Insumos (ingredientes, materiales, recetas): se descuenta el contador
      de consumo, nunca el total adquirido.
    - Las compensaciones comparten un correlacion_id nuevo.

    Un evento pendiente que aún está dentro de la ventana de reconciliación
    se rechaza, salvo con forzar=True.
    """
    operador = validar_operador(operador)
    if not correlacion_id:
        raise ValidacionInventarioError("Se requiere el correlacion_id del evento.")

    config = obtener_config()
    originales = list(
        MovimientoInventario.objects.select_for_update()
        .filter(correlacion_id=correlacion_id, revertido=False)
        .exclude(subtipo=MovimientoInventario.SUBTIPO_REVERSION)
        .order_by("id")
    )
    if not originales:
        raise NadaQueRevertir(
            f"No hay movimientos por revertir para el evento {correlacion_id}.",
            correlacion_id=correlacion_id,
        )

    evento = (
        EventoProduccion.objects.select_for_update()
        .filter(correlacion_id=correlacion_id)
        .first()
    )
    if evento is not None and not forzar and evento.estado == EstadoEvento.PENDIENTE:
        ventana = timedelta(minutes=config["MINUTOS_RECONCILIACION"])
        if evento.created_at > timezone.now() - ventana:
            raise MovimientoNoReversible(
                f"El evento {correlacion_id} sigue en curso.",
                correlacion_id=correlacion_id,
            )

    nueva_correlacion = nuevo_correlacion_id()
    motivo = motivo_con_correlacion(
        motivo or f"Reversión del evento {correlacion_id}",
        nueva_correlacion,
    )

    salidas = [m for m in originales if m.tipo == MovimientoInventario.TIPO_ENTRADA]
    insumos = [m for m in originales if m.tipo != MovimientoInventario.TIPO_ENTRADA]

    compensaciones = [
        _compensar(m, operador=operador, motivo=motivo, correlacion_id=nueva_correlacion)[1]
        for m in salidas + insumos
    ]
    ids_originales = [m.pk for m in originales]
    _cerrar_originales(originales)

    if evento is not None:
        evento.estado = EstadoEvento.REVERTIDO
        evento.finalizado_en = timezone.now()
        evento.detalles = {**evento.detalles, "revertido_por": nueva_correlacion}
        evento.save(update_fields=["estado", "finalizado_en", "detalles", "updated_at"])
    _cerrar_dependientes(correlacion_id)

    logger.info(
        "Evento %s revertido por %s: %d movimientos compensados (%s)",
        correlacion_id,
        operador,
        len(compensaciones),
        nueva_correlacion,
    )
    return ResultadoReversion(
        correlacion_id=nueva_correlacion,
        correlacion_revertida=correlacion_id,
        compensaciones=compensaciones,
        originales=ids_originales,
    )


def reconciliar_eventos_pendientes(*, operador: str | None = None, ahora=None) -> list[str]:
    """
    Compensa eventos que quedaron pendientes o abortados más allá de la
    ventana de reconciliación. Devuelve los correlacion_id reconciliados.
    """
    config = obtener_config()
    operador = operador or config["OPERADOR_SISTEMA"]
    ahora = ahora or timezone.now()
    limite = ahora - timedelta(minutes=config["MINUTOS_RECONCILIACION"])

    eventos = EventoProduccion.objects.filter(
        estado__in=[EstadoEvento.PENDIENTE, EstadoEvento.ABORTADO],
        created_at__lt=limite,
    ).order_by("created_at")

    reconciliados: list[str] = []
    for evento in eventos:
        try:
            revertir_evento(
                correlacion_id=evento.correlacion_id,
                operador=operador,
                motivo="Reconciliación de evento incompleto",
                forzar=True,
            )
        except NadaQueRevertir:
            EventoProduccion.objects.filter(pk=evento.pk).update(
                estado=EstadoEvento.REVERTIDO,
                finalizado_en=ahora,
            )
        except MovimientoNoReversible as exc:
            logger.error("No se pudo reconciliar el evento %s: %s", evento.correlacion_id, exc)
            continue
        logger.warning("Evento %s (%s) reconciliado", evento.correlacion_id, evento.estado)
        reconciliados.append(evento.correlacion_id)
    return reconciliados

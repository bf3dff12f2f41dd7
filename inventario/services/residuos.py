import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from inventario.models import EstadoEvento, EventoProduccion, MotivoResiduo, MovimientoInventario, Residuo

from .errores import ItemNoEncontrado, ValidacionInventarioError
from .produccion import InsumoProduccion, consumir_insumos
from .reversion import revertir_evento
from .stock import obtener_manejador, validar_cantidad, validar_operador

logger = logging.getLogger(__name__)


@transaction.atomic
def registrar_residuo(
    *,
    tipo_item: str,
    item_id: int,
    cantidad: Decimal,
    motivo: str,
    operador: str,
    observaciones: str = "",
    fecha=None,
) -> Residuo:
    """
    Registra una pérdida (vencido, dañado, merma...). Descuenta lo disponible
    del item en un evento correlacionado, para poder deshacerlo.
    """
    if motivo not in MotivoResiduo.values:
        raise ValidacionInventarioError(f"Motivo de residuo inválido: {motivo}.")

    cantidad = validar_cantidad(cantidad)
    operador = validar_operador(operador)
    manejador = obtener_manejador(tipo_item)
    item = manejador.obtener(item_id)

    descripcion = f"Residuo ({MotivoResiduo(motivo).label})"
    if observaciones:
        descripcion = f"{descripcion}: {observaciones}"

    consumo = consumir_insumos(
        insumos=[InsumoProduccion(manejador.tipo, manejador.clave(item), cantidad)],
        tipo_evento=EventoProduccion.TIPO_RESIDUO,
        operador=operador,
        motivo=descripcion,
        subtipo=MovimientoInventario.SUBTIPO_RESIDUO,
    )

    residuo = Residuo.objects.create(
        tipo_item=manejador.tipo,
        item_id=manejador.clave(item),
        item_nombre=item.nombre,
        cantidad=cantidad,
        unidad_medida=item.unidad_medida,
        motivo=motivo,
        observaciones=observaciones,
        operador=operador,
        fecha=fecha or timezone.now(),
        correlacion_id=consumo.correlacion_id,
    )
    logger.info("Residuo de %s %s '%s' registrado por %s", cantidad, item.unidad_medida, item.nombre, operador)
    return residuo


@transaction.atomic
def eliminar_residuo(*, residuo: Residuo, operador: str, ahora=None) -> Residuo:
    """
    Elimina (desactiva) un residuo y restituye la cantidad perdida.
    Solo se permite el mismo día en que se registró.
    """
    operador = validar_operador(operador)
    residuo = Residuo.objects.select_for_update().get(pk=residuo.pk)
    if not residuo.activo:
        raise ItemNoEncontrado("El residuo ya fue eliminado.", residuo_id=residuo.pk)

    ahora = ahora or timezone.now()
    if timezone.localdate(residuo.fecha) != timezone.localdate(ahora):
        raise ValidacionInventarioError(
            "Solo se pueden eliminar residuos registrados el mismo día.",
            residuo_id=residuo.pk,
        )

    ya_revertido = EventoProduccion.objects.filter(
        correlacion_id=residuo.correlacion_id,
        estado=EstadoEvento.REVERTIDO,
    ).exists()
    if not ya_revertido:
        revertir_evento(
            correlacion_id=residuo.correlacion_id,
            operador=operador,
            motivo=f"Eliminación de residuo #{residuo.pk}",
            forzar=True,
        )
    residuo.activo = False
    residuo.save(update_fields=["activo", "updated_at"])
    return residuo

import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from inventario.models import (
    EstadoEvento,
    EstadoProceso,
    EventoProduccion,
    FaseReceta,
    HistorialFase,
    Ingrediente,
    Receta,
    RecetaIngrediente,
    TipoItem,
)

from .errores import ItemNoEncontrado, TransicionInvalida, ValidacionInventarioError
from .produccion import (
    Faltante,
    InsumoProduccion,
    ResultadoProduccion,
    SolicitudProduccion,
    consumir_insumos,
    producir,
    verificar_insumos,
)
from .reversion import revertir_evento
from .stock import validar_cantidad, validar_operador

logger = logging.getLogger(__name__)

SIGUIENTE_FASE = {
    FaseReceta.PREPARADO: FaseReceta.INTERMEDIO,
    FaseReceta.INTERMEDIO: FaseReceta.TERMINADO,
}


def _leer_lineas(ingredientes: list[dict]) -> list[tuple[Ingrediente, Decimal, str]]:
    """
    Valida una lista de {"ingrediente_id", "cantidad", "unidad_medida"} y
    devuelve (ingrediente, cantidad, unidad) en el mismo orden.
    """
    ids = []
    for dato in ingredientes:
        if "ingrediente_id" not in dato:
            raise ValidacionInventarioError("Cada ingrediente debe indicar ingrediente_id.")
        ids.append(dato["ingrediente_id"])

    if len(set(map(str, ids))) != len(ids):
        raise ValidacionInventarioError("Hay ingredientes repetidos.")

    existentes = {
        str(i.pk): i for i in Ingrediente.objects.filter(pk__in=ids, activo=True)
    }
    lineas = []
    for dato in ingredientes:
        ingrediente = existentes.get(str(dato["ingrediente_id"]))
        if ingrediente is None:
            raise ItemNoEncontrado(
                f"El ingrediente {dato['ingrediente_id']} no existe o está inactivo.",
                tipo_item=TipoItem.INGREDIENTE.value,
                item_id=dato["ingrediente_id"],
            )
        cantidad = validar_cantidad(dato.get("cantidad"))
        unidad = dato.get("unidad_medida") or ingrediente.unidad_medida
        lineas.append((ingrediente, cantidad, unidad))
    return lineas


@transaction.atomic
def crear_receta(
    *,
    nombre: str,
    rendimiento_cantidad: Decimal,
    ingredientes: list[dict],
    rendimiento_unidad: str = "unidad",
    descripcion: str = "",
) -> Receta:
    """
    Crea una receta en borrador con sus ingredientes por lote.
    """
    nombre = (nombre or "").strip()
    if not nombre:
        raise ValidacionInventarioError("El nombre de la receta es obligatorio.")
    if Receta.objects.filter(nombre__iexact=nombre, activo=True).exists():
        raise ValidacionInventarioError(f"Ya existe una receta activa llamada '{nombre}'.")

    rendimiento_cantidad = validar_cantidad(rendimiento_cantidad, "rendimiento_cantidad")
    if not ingredientes:
        raise ValidacionInventarioError("La receta debe tener al menos un ingrediente.")

    lineas = _leer_lineas(ingredientes)

    receta = Receta.objects.create(
        nombre=nombre,
        descripcion=descripcion,
        rendimiento_cantidad=rendimiento_cantidad,
        rendimiento_unidad=rendimiento_unidad or "unidad",
    )
    RecetaIngrediente.objects.bulk_create(
        [
            RecetaIngrediente(
                receta=receta,
                ingrediente=ingrediente,
                cantidad=cantidad,
                unidad_medida=unidad,
                orden=idx,
            )
            for idx, (ingrediente, cantidad, unidad) in enumerate(lineas, start=1)
        ]
    )
    return receta


def _bloquear_receta(receta: Receta) -> Receta:
    try:
        receta = Receta.objects.select_for_update().get(pk=receta.pk)
    except Receta.DoesNotExist:
        raise ItemNoEncontrado("Receta no encontrada.", tipo_item=TipoItem.RECETA.value)
    if not receta.activo:
        raise ItemNoEncontrado(
            f"La receta '{receta.nombre}' está inactiva.",
            tipo_item=TipoItem.RECETA.value,
            item_id=receta.pk,
        )
    return receta


def _cerrar_fase_abierta(receta: Receta, ahora) -> None:
    receta.historial_fases.filter(fecha_fin__isnull=True).update(fecha_fin=ahora, updated_at=ahora)


def _insumos_de_receta(receta: Receta, lotes: Decimal) -> list[InsumoProduccion]:
    return [
        InsumoProduccion(
            tipo_item=TipoItem.INGREDIENTE.value,
            item_id=linea.ingrediente_id,
            cantidad=linea.cantidad * lotes,
        )
        for linea in receta.ingredientes.all()
    ]


@transaction.atomic
def iniciar_receta(*, receta: Receta, notas: str = "") -> Receta:
    receta = _bloquear_receta(receta)
    if receta.estado_proceso != EstadoProceso.BORRADOR:
        raise TransicionInvalida(
            "Solo se puede iniciar una receta en borrador.",
            estado=receta.estado_proceso,
        )

    receta.estado_proceso = EstadoProceso.EN_PROCESO
    receta.fase_actual = FaseReceta.PREPARADO
    receta.save(update_fields=["estado_proceso", "fase_actual", "updated_at"])
    HistorialFase.objects.create(receta=receta, fase=FaseReceta.PREPARADO, notas=notas)
    return receta


@transaction.atomic
def avanzar_fase(
    *,
    receta: Receta,
    operador: str,
    notas: str = "",
    ingredientes_adicionales: list[dict] | None = None,
) -> Receta:
    """
    Avanza la receta a la siguiente fase (preparado → intermedio → terminado).

    - Solo desde en_proceso y si la fase actual no es terminado.
    - Al llegar a terminado la receta queda completada.
    - Los ingredientes adicionales se consumen en un solo evento
      correlacionado y se agregan a la receta como líneas adicionales.
    """
    receta = _bloquear_receta(receta)
    if receta.estado_proceso == EstadoProceso.PAUSADO:
        raise TransicionInvalida("La receta está pausada; reanúdela antes de avanzar.")
    if receta.estado_proceso != EstadoProceso.EN_PROCESO:
        raise TransicionInvalida(
            "La receta debe estar en proceso para avanzar de fase.",
            estado=receta.estado_proceso,
        )
    siguiente = SIGUIENTE_FASE.get(receta.fase_actual)
    if siguiente is None:
        raise TransicionInvalida("La receta ya está en la fase final.", fase=receta.fase_actual)

    correlacion_id = ""
    agregados = []
    if ingredientes_adicionales:
        lineas = _leer_lineas(ingredientes_adicionales)
        consumo = consumir_insumos(
            insumos=[
                InsumoProduccion(TipoItem.INGREDIENTE.value, ingrediente.pk, cantidad)
                for ingrediente, cantidad, _unidad in lineas
            ],
            tipo_evento=EventoProduccion.TIPO_CONSUMO_FASE,
            operador=operador,
            motivo=f"Consumido al avanzar receta '{receta.nombre}' a {siguiente.label}",
            receta=receta,
        )
        correlacion_id = consumo.correlacion_id

        ultimo_orden = receta.ingredientes.count()
        for idx, (ingrediente, cantidad, unidad) in enumerate(lineas, start=1):
            RecetaIngrediente.objects.create(
                receta=receta,
                ingrediente=ingrediente,
                cantidad=cantidad,
                unidad_medida=unidad,
                orden=ultimo_orden + idx,
                adicional=True,
            )
            agregados.append(
                {
                    "ingrediente_id": ingrediente.pk,
                    "nombre": ingrediente.nombre,
                    "cantidad": str(cantidad),
                    "unidad_medida": unidad,
                }
            )

    ahora = timezone.now()
    _cerrar_fase_abierta(receta, ahora)
    HistorialFase.objects.create(
        receta=receta,
        fase=siguiente,
        fecha_inicio=ahora,
        fecha_fin=ahora if siguiente == FaseReceta.TERMINADO else None,
        notas=notas,
        correlacion_id=correlacion_id,
        ingredientes_agregados=agregados,
    )

    receta.fase_actual = siguiente
    if siguiente == FaseReceta.TERMINADO:
        receta.estado_proceso = EstadoProceso.COMPLETADO
    receta.save(update_fields=["fase_actual", "estado_proceso", "updated_at"])

    logger.info("Receta '%s' avanzó a %s", receta.nombre, siguiente)
    return receta


@transaction.atomic
def pausar_receta(*, receta: Receta) -> Receta:
    receta = _bloquear_receta(receta)
    if receta.estado_proceso != EstadoProceso.EN_PROCESO:
        raise TransicionInvalida(
            "Solo se puede pausar una receta en proceso.",
            estado=receta.estado_proceso,
        )
    receta.estado_proceso = EstadoProceso.PAUSADO
    receta.save(update_fields=["estado_proceso", "updated_at"])
    return receta


@transaction.atomic
def reanudar_receta(*, receta: Receta) -> Receta:
    receta = _bloquear_receta(receta)
    if receta.estado_proceso != EstadoProceso.PAUSADO:
        raise TransicionInvalida(
            "Solo se puede reanudar una receta pausada.",
            estado=receta.estado_proceso,
        )
    receta.estado_proceso = EstadoProceso.EN_PROCESO
    receta.save(update_fields=["estado_proceso", "updated_at"])
    return receta


def _revertir_eventos(eventos, *, operador: str, motivo: str) -> list[str]:
    revertidos = []
    for evento in eventos:
        if evento.estado == EstadoEvento.REVERTIDO:
            continue
        revertir_evento(
            correlacion_id=evento.correlacion_id,
            operador=operador,
            motivo=motivo,
            forzar=True,
        )
        revertidos.append(evento.correlacion_id)
    return revertidos


@transaction.atomic
def reiniciar_receta(*, receta: Receta, operador: str, motivo: str = "") -> Receta:
    """
    Vuelve la receta a borrador / preparado.

    Los ingredientes adicionales consumidos durante las fases se restituyen
    (se revierten sus eventos) y sus líneas se quitan de la receta.
    """
    operador = validar_operador(operador)
    receta = _bloquear_receta(receta)
    if receta.estado_proceso == EstadoProceso.BORRADOR:
        raise TransicionInvalida("La receta ya está en borrador.")

    correlaciones = list(
        receta.historial_fases.exclude(correlacion_id="").values_list("correlacion_id", flat=True)
    )
    eventos = EventoProduccion.objects.filter(correlacion_id__in=correlaciones).order_by("created_at")
    _revertir_eventos(
        eventos,
        operador=operador,
        motivo=f"Reinicio de receta '{receta.nombre}'",
    )
    receta.ingredientes.filter(adicional=True).delete()

    ahora = timezone.now()
    _cerrar_fase_abierta(receta, ahora)
    HistorialFase.objects.create(
        receta=receta,
        fase=FaseReceta.PREPARADO,
        fecha_inicio=ahora,
        fecha_fin=ahora,
        notas=motivo or "Receta reiniciada",
        reinicio=True,
    )

    receta.estado_proceso = EstadoProceso.BORRADOR
    receta.fase_actual = FaseReceta.PREPARADO
    receta.save(update_fields=["estado_proceso", "fase_actual", "updated_at"])

    logger.info("Receta '%s' reiniciada por %s", receta.nombre, operador)
    return receta


def verificar_disponibilidad_receta(*, receta: Receta, lotes: Decimal) -> list[Faltante]:
    lotes = validar_cantidad(lotes, "lotes")
    return verificar_insumos(_insumos_de_receta(receta, lotes))


def producir_receta(
    *,
    receta: Receta,
    lotes: Decimal,
    operador: str,
    motivo: str = "",
    correlacion_id: str | None = None,
) -> ResultadoProduccion:
    """
    Produce `lotes` de la receta consumiendo sus ingredientes
    (cantidad por lote * lotes). Acredita lotes * rendimiento.
    """
    lotes = validar_cantidad(lotes, "lotes")
    if not receta.activo:
        raise ItemNoEncontrado(f"La receta '{receta.nombre}' está inactiva.")
    insumos = _insumos_de_receta(receta, lotes)
    if not insumos:
        raise ValidacionInventarioError("La receta no tiene ingredientes definidos.")

    return producir(
        SolicitudProduccion(
            tipo_salida=TipoItem.RECETA.value,
            salida_id=receta.pk,
            cantidad=lotes,
            operador=operador,
            insumos=insumos,
            motivo=motivo or f"Producción de receta '{receta.nombre}'",
            correlacion_id=correlacion_id,
        )
    )


@transaction.atomic
def desactivar_receta(*, receta: Receta, operador: str) -> Receta:
    """
    Revierte las producciones de la receta y los consumos de sus fases, y
    luego la desactiva.
    """
    operador = validar_operador(operador)
    receta = _bloquear_receta(receta)

    eventos = receta.eventos.exclude(estado=EstadoEvento.REVERTIDO).order_by("created_at")
    revertidos = _revertir_eventos(
        list(eventos),
        operador=operador,
        motivo=f"Desactivación de receta '{receta.nombre}'",
    )

    receta.activo = False
    receta.save(update_fields=["activo", "updated_at"])
    receta.refresh_from_db()

    logger.info(
        "Receta '%s' desactivada por %s (%d eventos revertidos)",
        receta.nombre,
        operador,
        len(revertidos),
    )
    return receta

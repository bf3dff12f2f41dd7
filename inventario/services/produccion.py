"""
Orquestador de producción.

Una producción debita cada insumo y acredita una salida; todos los
movimientos comparten el mismo correlacion_id y quedan asociados a un
EventoProduccion. Con INVENTARIO["PRODUCCION_ATOMICA"] (por defecto) todo
ocurre en una sola transacción; sin ella cada débito se confirma por
separado y el evento queda pendiente/abortado hasta que se reconcilia.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from inventario.conf import obtener_config
from inventario.models import (
    EstadoEvento,
    EventoProduccion,
    MovimientoInventario,
    Receta,
    TipoItem,
)

from .errores import (
    InventarioError,
    InventarioInsuficiente,
    ProduccionAbortada,
    ValidacionInventarioError,
)
from .inventario import acreditar, debitar
from .movimientos import correlacion_en_uso, motivo_con_correlacion, nuevo_correlacion_id
from .stock import obtener_manejador, validar_cantidad, validar_operador

logger = logging.getLogger(__name__)


@dataclass
class InsumoProduccion:
    tipo_item: str
    item_id: int
    cantidad: Decimal


@dataclass
class SolicitudProduccion:
    tipo_salida: str
    salida_id: int
    cantidad: Decimal
    operador: str
    insumos: list[InsumoProduccion] = field(default_factory=list)
    motivo: str = ""
    correlacion_id: str | None = None


@dataclass
class Faltante:
    tipo_item: str
    item_id: int
    nombre: str
    disponible: Decimal
    requerido: Decimal

    def como_dict(self) -> dict:
        return {
            "tipo_item": self.tipo_item,
            "item_id": self.item_id,
            "nombre": self.nombre,
            "disponible": str(self.disponible),
            "requerido": str(self.requerido),
        }


@dataclass
class ResultadoProduccion:
    salida: object
    cantidad_producida: Decimal
    correlacion_id: str
    movimientos: list[MovimientoInventario]
    evento: EventoProduccion


@dataclass
class ResultadoConsumo:
    correlacion_id: str
    movimientos: list[MovimientoInventario]
    evento: EventoProduccion


def normalizar_insumos(insumos) -> list[InsumoProduccion]:
    normalizados = []
    for insumo in insumos or []:
        if isinstance(insumo, dict):
            insumo = InsumoProduccion(
                tipo_item=insumo.get("tipo_item"),
                item_id=insumo.get("item_id"),
                cantidad=insumo.get("cantidad"),
            )
        manejador = obtener_manejador(insumo.tipo_item)
        normalizados.append(
            InsumoProduccion(
                tipo_item=manejador.tipo,
                item_id=insumo.item_id,
                cantidad=validar_cantidad(insumo.cantidad),
            )
        )
    return normalizados


def verificar_insumos(insumos: list[InsumoProduccion]) -> list[Faltante]:
    """
    Verifica la disponibilidad de TODOS los insumos antes de mover stock.
    Un mismo item repetido se suma. Devuelve la lista completa de faltantes.
    """
    requerimientos: dict[tuple[str, int], Decimal] = {}
    for insumo in insumos:
        clave = (insumo.tipo_item, insumo.item_id)
        requerimientos[clave] = requerimientos.get(clave, Decimal("0")) + insumo.cantidad

    faltantes: list[Faltante] = []
    for (tipo_item, item_id), requerido in requerimientos.items():
        item = obtener_manejador(tipo_item).obtener(item_id)
        disponible = item.disponible
        if disponible < requerido:
            faltantes.append(
                Faltante(
                    tipo_item=tipo_item,
                    item_id=item_id,
                    nombre=item.nombre,
                    disponible=disponible,
                    requerido=requerido,
                )
            )
    return faltantes


def _crear_evento(
    *,
    correlacion_id: str,
    tipo: str,
    operador: str,
    receta: Receta | None = None,
    tipo_salida: str = "",
    salida_id: int | None = None,
    cantidad_salida: Decimal | None = None,
    detalles: dict | None = None,
) -> EventoProduccion:
    return EventoProduccion.objects.create(
        correlacion_id=correlacion_id,
        tipo=tipo,
        estado=EstadoEvento.PENDIENTE,
        operador=operador,
        receta=receta,
        tipo_salida=tipo_salida,
        salida_id=salida_id,
        cantidad_salida=cantidad_salida,
        detalles=detalles or {},
    )


def _finalizar_evento(evento: EventoProduccion, estado: str) -> None:
    evento.estado = estado
    evento.finalizado_en = timezone.now()
    evento.save(update_fields=["estado", "finalizado_en", "updated_at"])


def _debitar_insumos(
    *,
    evento: EventoProduccion,
    insumos: list[InsumoProduccion],
    motivo: str,
    operador: str,
    subtipo: str,
    movimientos: list[MovimientoInventario],
) -> None:
    for insumo in insumos:
        resultado = debitar(
            tipo_item=insumo.tipo_item,
            item_id=insumo.item_id,
            cantidad=insumo.cantidad,
            motivo=motivo,
            operador=operador,
            subtipo=subtipo,
            correlacion_id=evento.correlacion_id,
            detalles={"evento": evento.tipo},
        )
        movimientos.append(resultado.movimiento)


def _abortar(
    exc: InventarioError,
    *,
    evento: EventoProduccion,
    movimientos: list[MovimientoInventario],
    persistidos: bool,
) -> ProduccionAbortada:
    debitos = [
        {
            "movimiento_id": m.pk,
            "tipo_item": m.tipo_item,
            "item_id": m.item_id,
            "cantidad": str(m.cantidad),
        }
        for m in movimientos
        if m.tipo == MovimientoInventario.TIPO_SALIDA
    ]
    if persistidos:
        _finalizar_evento(evento, EstadoEvento.ABORTADO)
        logger.error(
            "Evento %s abortado con %d débitos ya confirmados, requiere reconciliación: %s (%s)",
            evento.correlacion_id,
            len(debitos),
            exc,
            debitos,
        )
    else:
        logger.error(
            "Evento %s abortado, la transacción se revierte: %s",
            evento.correlacion_id,
            exc,
        )
    return ProduccionAbortada(
        f"La producción se interrumpió: {exc}",
        correlacion_id=evento.correlacion_id,
        debitos_aplicados=debitos,
        persistidos=persistidos,
    )


def _preparar_correlacion(correlacion_id: str | None) -> str:
    correlacion_id = str(correlacion_id or "").strip()
    if correlacion_id:
        if correlacion_en_uso(correlacion_id):
            raise ValidacionInventarioError(
                f"El correlacion_id {correlacion_id} ya fue utilizado.",
                correlacion_id=correlacion_id,
            )
        return correlacion_id
    return nuevo_correlacion_id()


def producir(solicitud: SolicitudProduccion) -> ResultadoProduccion:
    """
    Registra un evento de producción completo.

    1) Verifica todos los insumos y reporta todos los faltantes juntos.
    2) Debita los insumos en el orden recibido.
    3) Acredita la salida. Para recetas, cantidad son lotes y lo acreditado
       es lotes * rendimiento.

    Sin insumos es una entrada manual correlacionada.
    """
    config = obtener_config()
    operador = validar_operador(solicitud.operador)
    cantidad = validar_cantidad(solicitud.cantidad)
    insumos = normalizar_insumos(solicitud.insumos)

    manejador_salida = obtener_manejador(solicitud.tipo_salida)
    salida = manejador_salida.obtener(solicitud.salida_id)
    salida_id = manejador_salida.clave(salida)

    for insumo in insumos:
        if insumo.tipo_item == manejador_salida.tipo and str(insumo.item_id) == str(salida_id):
            raise ValidacionInventarioError("La salida no puede ser también un insumo de la producción.")

    receta = None
    cantidad_producida = cantidad
    if manejador_salida.tipo == TipoItem.RECETA.value:
        receta = salida
        cantidad_producida = cantidad * receta.rendimiento_cantidad

    correlacion_id = _preparar_correlacion(solicitud.correlacion_id)

    faltantes = verificar_insumos(insumos)
    if faltantes:
        raise InventarioInsuficiente(faltantes)

    motivo = motivo_con_correlacion(
        solicitud.motivo or f"Producción de {salida.nombre}",
        correlacion_id,
    )
    detalles_evento = {
        "cantidad_solicitada": str(cantidad),
        "insumos": [
            {"tipo_item": i.tipo_item, "item_id": i.item_id, "cantidad": str(i.cantidad)}
            for i in insumos
        ],
    }
    atomica = config["PRODUCCION_ATOMICA"]

    def _ejecutar():
        evento = _crear_evento(
            correlacion_id=correlacion_id,
            tipo=EventoProduccion.TIPO_PRODUCCION if insumos else EventoProduccion.TIPO_ENTRADA_MANUAL,
            operador=operador,
            receta=receta,
            tipo_salida=manejador_salida.tipo,
            salida_id=salida_id,
            cantidad_salida=cantidad_producida,
            detalles=detalles_evento,
        )
        movimientos: list[MovimientoInventario] = []
        try:
            _debitar_insumos(
                evento=evento,
                insumos=insumos,
                motivo=motivo,
                operador=operador,
                subtipo=MovimientoInventario.SUBTIPO_CONSUMO,
                movimientos=movimientos,
            )
            credito = acreditar(
                tipo_item=manejador_salida.tipo,
                item_id=salida_id,
                cantidad=cantidad_producida,
                motivo=motivo,
                operador=operador,
                subtipo=MovimientoInventario.SUBTIPO_PRODUCCION,
                correlacion_id=correlacion_id,
                detalles={
                    "evento": evento.tipo,
                    "cantidad_solicitada": str(cantidad),
                    "insumos": detalles_evento["insumos"],
                },
            )
        except InventarioError as exc:
            raise _abortar(exc, evento=evento, movimientos=movimientos, persistidos=not atomica) from exc
        movimientos.append(credito.movimiento)
        _finalizar_evento(evento, EstadoEvento.COMPLETADO)
        return evento, credito.item, movimientos

    if atomica:
        with transaction.atomic():
            evento, salida, movimientos = _ejecutar()
    else:
        evento, salida, movimientos = _ejecutar()

    logger.info(
        "Producción %s: %s %s de %s (%d insumos) por %s",
        correlacion_id,
        cantidad_producida,
        salida.unidad_medida,
        salida.nombre,
        len(insumos),
        operador,
    )
    return ResultadoProduccion(
        salida=salida,
        cantidad_producida=cantidad_producida,
        correlacion_id=correlacion_id,
        movimientos=movimientos,
        evento=evento,
    )


def consumir_insumos(
    *,
    insumos,
    tipo_evento: str,
    operador: str,
    motivo: str,
    subtipo: str = MovimientoInventario.SUBTIPO_CONSUMO,
    receta: Receta | None = None,
    correlacion_id: str | None = None,
) -> ResultadoConsumo:
    """
    Evento correlacionado que solo debita (consumo en fase de receta,
    residuos). Sigue las mismas reglas de verificación y atomicidad que
    producir().
    """
    config = obtener_config()
    operador = validar_operador(operador)
    insumos = normalizar_insumos(insumos)
    if not insumos:
        raise ValidacionInventarioError("Debe indicar al menos un insumo a consumir.")

    correlacion_id = _preparar_correlacion(correlacion_id)
    faltantes = verificar_insumos(insumos)
    if faltantes:
        raise InventarioInsuficiente(faltantes)

    motivo = motivo_con_correlacion(motivo, correlacion_id)
    atomica = config["PRODUCCION_ATOMICA"]

    def _ejecutar():
        evento = _crear_evento(
            correlacion_id=correlacion_id,
            tipo=tipo_evento,
            operador=operador,
            receta=receta,
            detalles={
                "insumos": [
                    {"tipo_item": i.tipo_item, "item_id": i.item_id, "cantidad": str(i.cantidad)}
                    for i in insumos
                ],
            },
        )
        movimientos: list[MovimientoInventario] = []
        try:
            _debitar_insumos(
                evento=evento,
                insumos=insumos,
                motivo=motivo,
                operador=operador,
                subtipo=subtipo,
                movimientos=movimientos,
            )
        except InventarioError as exc:
            raise _abortar(exc, evento=evento, movimientos=movimientos, persistidos=not atomica) from exc
        _finalizar_evento(evento, EstadoEvento.COMPLETADO)
        return evento, movimientos

    if atomica:
        with transaction.atomic():
            evento, movimientos = _ejecutar()
    else:
        evento, movimientos = _ejecutar()

    logger.info("Consumo %s (%s): %d insumos por %s", correlacion_id, tipo_evento, len(insumos), operador)
    return ResultadoConsumo(correlacion_id=correlacion_id, movimientos=movimientos, evento=evento)

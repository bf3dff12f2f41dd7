import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.db.models import F

from inventario.models import (
    Ingrediente,
    Material,
    MovimientoInventario,
    ProductoCatalogo,
    TipoItem,
)

from .errores import StockInsuficiente, ValidacionInventarioError
from .movimientos import registrar_movimiento
from .stock import a_decimal, obtener_manejador, validar_cantidad, validar_operador

logger = logging.getLogger(__name__)


@dataclass
class ResultadoOperacion:
    item: object
    movimiento: MovimientoInventario


@transaction.atomic
def debitar(
    *,
    tipo_item: str,
    item_id: int,
    cantidad: Decimal,
    motivo: str,
    operador: str,
    subtipo: str = MovimientoInventario.SUBTIPO_CONSUMO,
    correlacion_id: str | None = None,
    detalles: dict | None = None,
    fecha=None,
) -> ResultadoOperacion:
    """
    Registra una SALIDA de stock.

    - cantidad > 0 y el item debe existir y estar activo.
    - Crece el contador de consumo (consumido / utilizado); los productos de
      catálogo descuentan directamente su stock.
    - Si lo disponible no alcanza, lanza StockInsuficiente sin modificar nada.
    - Escribe exactamente un MovimientoInventario de tipo salida.
    """
    cantidad = validar_cantidad(cantidad)
    operador = validar_operador(operador)
    manejador = obtener_manejador(tipo_item)

    item = manejador.obtener(item_id, bloquear=True)
    disponible = item.disponible
    if disponible < cantidad:
        raise StockInsuficiente(item.nombre, disponible, cantidad)

    contador, delta = manejador.debito(cantidad)
    cambio = manejador.mover(item, contador, delta)
    if cambio is None:
        # Otro proceso consumió entre la lectura y la actualización.
        raise StockInsuficiente(item.nombre, item.disponible, cantidad)

    movimiento = registrar_movimiento(
        manejador=manejador,
        item=item,
        cambio=cambio,
        tipo=MovimientoInventario.TIPO_SALIDA,
        subtipo=subtipo,
        cantidad=cantidad,
        motivo=motivo,
        operador=operador,
        correlacion_id=correlacion_id,
        detalles=detalles,
        fecha=fecha,
    )
    return ResultadoOperacion(item=item, movimiento=movimiento)


@transaction.atomic
def acreditar(
    *,
    tipo_item: str,
    item_id: int,
    cantidad: Decimal,
    motivo: str,
    operador: str,
    subtipo: str = MovimientoInventario.SUBTIPO_PRODUCCION,
    correlacion_id: str | None = None,
    detalles: dict | None = None,
    fecha=None,
) -> ResultadoOperacion:
    """
    Registra una ENTRADA de stock.

    Crece total_adquirido / producido / stock. Si el item es un producto de
    catálogo sin inventario, el inventario se crea en cero antes de acreditar.
    """
    cantidad = validar_cantidad(cantidad)
    operador = validar_operador(operador)
    manejador = obtener_manejador(tipo_item)

    item = manejador.obtener(item_id, bloquear=True, crear=True)
    contador, delta = manejador.credito(cantidad)
    cambio = manejador.mover(item, contador, delta)

    movimiento = registrar_movimiento(
        manejador=manejador,
        item=item,
        cambio=cambio,
        tipo=MovimientoInventario.TIPO_ENTRADA,
        subtipo=subtipo,
        cantidad=cantidad,
        motivo=motivo,
        operador=operador,
        correlacion_id=correlacion_id,
        detalles=detalles,
        fecha=fecha,
    )
    return ResultadoOperacion(item=item, movimiento=movimiento)


def registrar_entrada(
    *,
    tipo_item: str,
    item_id: int,
    cantidad: Decimal,
    operador: str,
    motivo: str = "",
) -> ResultadoOperacion:
    """
    Entrada manual (compra, recepción). Es el único tipo de movimiento que
    se puede revertir de forma individual.
    """
    return acreditar(
        tipo_item=tipo_item,
        item_id=item_id,
        cantidad=cantidad,
        motivo=motivo or "Entrada manual",
        operador=operador,
        subtipo=MovimientoInventario.SUBTIPO_MANUAL,
    )


@transaction.atomic
def ajustar(
    *,
    tipo_item: str,
    item_id: int,
    cantidad: Decimal,
    motivo: str,
    operador: str,
) -> ResultadoOperacion:
    """
    Registra un AJUSTE de inventario (positivo o negativo).

    - cantidad > 0 → crece el contador de entrada
    - cantidad < 0 → crece el contador de consumo
    - Motivo obligatorio.
    - No permite que lo disponible quede negativo.
    """
    cantidad = a_decimal(cantidad)
    if cantidad == 0:
        raise ValidacionInventarioError("La cantidad del ajuste no puede ser 0.")

    if not motivo or not motivo.strip():
        raise ValidacionInventarioError("El motivo del ajuste es obligatorio.")

    operador = validar_operador(operador)
    manejador = obtener_manejador(tipo_item)
    item = manejador.obtener(item_id, bloquear=True, crear=cantidad > 0)

    if cantidad > 0:
        contador, delta = manejador.credito(cantidad)
    else:
        if item.disponible < -cantidad:
            raise StockInsuficiente(item.nombre, item.disponible, -cantidad)
        contador, delta = manejador.debito(-cantidad)

    cambio = manejador.mover(item, contador, delta)
    if cambio is None:
        raise StockInsuficiente(item.nombre, item.disponible, -cantidad)

    movimiento = registrar_movimiento(
        manejador=manejador,
        item=item,
        cambio=cambio,
        tipo=MovimientoInventario.TIPO_AJUSTE,
        subtipo=MovimientoInventario.SUBTIPO_AJUSTE,
        cantidad=cantidad,
        motivo=motivo.strip(),
        operador=operador,
    )
    return ResultadoOperacion(item=item, movimiento=movimiento)


_MODELOS_REGISTRABLES = {
    TipoItem.INGREDIENTE.value: Ingrediente,
    TipoItem.MATERIAL.value: Material,
}


def _modelo_registrable(tipo_item):
    clave = getattr(tipo_item, "value", tipo_item)
    try:
        return _MODELOS_REGISTRABLES[clave]
    except KeyError:
        raise ValidacionInventarioError(
            "Solo ingredientes y materiales se administran con esta operación.",
            tipo_item=str(tipo_item),
        )


@transaction.atomic
def _registrar_item(
    *,
    tipo_item: str,
    nombre: str,
    unidad_medida: str,
    operador: str,
    cantidad_inicial: Decimal = Decimal("0"),
    producto_referencia: ProductoCatalogo | None = None,
    **extra,
):
    modelo = _modelo_registrable(tipo_item)
    nombre = (nombre or "").strip()
    if not nombre:
        raise ValidacionInventarioError("El nombre es obligatorio.")
    if not unidad_medida or not unidad_medida.strip():
        raise ValidacionInventarioError("La unidad de medida es obligatoria.")

    cantidad_inicial = a_decimal(cantidad_inicial, "cantidad_inicial")
    if cantidad_inicial < 0:
        raise ValidacionInventarioError("La cantidad inicial no puede ser negativa.")

    if modelo.objects.filter(nombre__iexact=nombre, activo=True).exists():
        raise ValidacionInventarioError(f"Ya existe un item activo llamado '{nombre}'.")

    item = modelo.objects.create(
        nombre=nombre,
        unidad_medida=unidad_medida.strip(),
        producto_referencia=producto_referencia,
        **extra,
    )
    if cantidad_inicial > 0:
        registrar_entrada(
            tipo_item=tipo_item,
            item_id=item.pk,
            cantidad=cantidad_inicial,
            operador=operador,
            motivo="Stock inicial",
        )
        item.refresh_from_db()
    return item


def registrar_ingrediente(
    *,
    nombre: str,
    unidad_medida: str,
    operador: str,
    cantidad_inicial: Decimal = Decimal("0"),
    producto_referencia: ProductoCatalogo | None = None,
) -> Ingrediente:
    return _registrar_item(
        tipo_item=TipoItem.INGREDIENTE,
        nombre=nombre,
        unidad_medida=unidad_medida,
        operador=operador,
        cantidad_inicial=cantidad_inicial,
        producto_referencia=producto_referencia,
    )


def registrar_material(
    *,
    nombre: str,
    unidad_medida: str,
    operador: str,
    cantidad_inicial: Decimal = Decimal("0"),
    stock_minimo: Decimal = Decimal("0"),
    producto_referencia: ProductoCatalogo | None = None,
) -> Material:
    stock_minimo = a_decimal(stock_minimo, "stock_minimo")
    if stock_minimo < 0:
        raise ValidacionInventarioError("El stock mínimo no puede ser negativo.")
    return _registrar_item(
        tipo_item=TipoItem.MATERIAL,
        nombre=nombre,
        unidad_medida=unidad_medida,
        operador=operador,
        cantidad_inicial=cantidad_inicial,
        producto_referencia=producto_referencia,
        stock_minimo=stock_minimo,
    )


def desactivar_item(*, tipo_item: str, item_id: int, operador: str):
    """
    Desactiva un ingrediente o material. Sus cantidades quedan congeladas:
    las primitivas de débito/crédito rechazan items inactivos.
    """
    modelo = _modelo_registrable(tipo_item)
    item = obtener_manejador(tipo_item).obtener(item_id)
    modelo.objects.filter(pk=item.pk).update(activo=False)
    item.activo = False
    logger.info("%s '%s' desactivado por %s", tipo_item, item.nombre, operador)
    return item


def activar_item(*, tipo_item: str, item_id: int, operador: str):
    modelo = _modelo_registrable(tipo_item)
    item = obtener_manejador(tipo_item).obtener(item_id, incluir_inactivos=True)
    if not item.activo and modelo.objects.filter(
        nombre__iexact=item.nombre, activo=True
    ).exclude(pk=item.pk).exists():
        raise ValidacionInventarioError(f"Ya existe un item activo llamado '{item.nombre}'.")
    modelo.objects.filter(pk=item.pk).update(activo=True)
    item.activo = True
    logger.info("%s '%s' activado por %s", tipo_item, item.nombre, operador)
    return item


def obtener_materiales_bajo_stock():
    """
    Materiales activos cuyo disponible está en o bajo el stock mínimo.
    """
    return Material.objects.filter(
        activo=True,
        consumido__gte=F("total_adquirido") - F("stock_minimo"),
    )

"""
Acceso al stock de los cuatro tipos de item.

Cada tipo se resuelve una sola vez en MANEJADORES: el manejador sabe qué
modelo usar, qué contador crece con una entrada y cuál con una salida, y
cómo aplicar un cambio de contador con una actualización condicional que
nunca deja lo disponible en negativo.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.db.models import F, Q
from django.utils import timezone

from inventario.models import (
    Ingrediente,
    InventarioProducto,
    Material,
    ProductoCatalogo,
    Receta,
    TipoItem,
)

from .errores import ItemNoEncontrado, ValidacionInventarioError


def a_decimal(valor, campo: str = "cantidad") -> Decimal:
    if isinstance(valor, Decimal):
        resultado = valor
    else:
        try:
            resultado = Decimal(str(valor))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidacionInventarioError(f"El campo '{campo}' debe ser numérico.", campo=campo)
    if not resultado.is_finite():
        raise ValidacionInventarioError(f"El campo '{campo}' debe ser numérico.", campo=campo)
    return resultado


def validar_cantidad(valor, campo: str = "cantidad") -> Decimal:
    cantidad = a_decimal(valor, campo)
    if cantidad <= 0:
        raise ValidacionInventarioError(f"El campo '{campo}' debe ser > 0.", campo=campo)
    return cantidad


def validar_operador(operador) -> str:
    if not operador or not str(operador).strip():
        raise ValidacionInventarioError("Se requiere el operador que registra el movimiento.")
    return str(operador).strip()


@dataclass(frozen=True)
class CambioStock:
    contador: str
    anterior: Decimal
    nuevo: Decimal
    disponible_anterior: Decimal
    disponible_nuevo: Decimal


@dataclass(frozen=True)
class ManejadorStock:
    tipo: str
    modelo: type
    contador_entrada: str
    contador_salida: str

    @property
    def contadores(self) -> list[str]:
        return list(dict.fromkeys([self.contador_entrada, self.contador_salida]))

    def obtener(self, item_id, *, bloquear: bool = False, incluir_inactivos: bool = False, crear: bool = False):
        qs = self.modelo.objects.all()
        if bloquear:
            qs = qs.select_for_update()
        try:
            item = qs.get(pk=item_id)
        except (self.modelo.DoesNotExist, ValueError, TypeError):
            raise ItemNoEncontrado(
                f"No existe {self.modelo._meta.verbose_name.lower()} con id {item_id}.",
                tipo_item=self.tipo,
                item_id=item_id,
            )
        if not incluir_inactivos and not item.activo:
            raise ItemNoEncontrado(
                f"'{item.nombre}' está inactivo.",
                tipo_item=self.tipo,
                item_id=item_id,
            )
        return item

    def clave(self, item) -> int:
        return item.pk

    def debito(self, cantidad: Decimal) -> tuple[str, Decimal]:
        """Contador y delta que representan una salida de `cantidad`."""
        if self.contador_salida == self.contador_entrada:
            return self.contador_salida, -cantidad
        return self.contador_salida, cantidad

    def credito(self, cantidad: Decimal) -> tuple[str, Decimal]:
        return self.contador_entrada, cantidad

    def efecto(self, contador: str, delta: Decimal) -> Decimal:
        """Cambio en lo disponible al mover `contador` en `delta`."""
        if contador == self.contador_entrada:
            return delta
        return -delta

    def filtro_disponible(self, cantidad: Decimal) -> Q:
        if self.contador_salida == self.contador_entrada:
            return Q(**{f"{self.contador_entrada}__gte": cantidad})
        return Q(**{f"{self.contador_salida}__lte": F(self.contador_entrada) - cantidad})

    def mover(self, item, contador: str, delta: Decimal) -> CambioStock | None:
        """
        Aplica `delta` sobre `contador` con un UPDATE condicional.

        Devuelve None (sin tocar nada) si el cambio dejaría lo disponible o
        el propio contador en negativo.
        """
        if contador not in self.contadores:
            raise ValidacionInventarioError(f"Contador '{contador}' inválido para {self.tipo}.")

        efecto = self.efecto(contador, delta)
        if delta == 0:
            valor = getattr(item, contador)
            return CambioStock(contador, valor, valor, item.disponible, item.disponible)

        qs = self.modelo.objects.filter(pk=item.pk)
        if efecto < 0:
            qs = qs.filter(self.filtro_disponible(-efecto))
        if delta < 0:
            qs = qs.filter(**{f"{contador}__gte": -delta})

        filas = qs.update(**{contador: F(contador) + delta, "updated_at": timezone.now()})
        item.refresh_from_db(fields=self.contadores + ["updated_at"])
        if not filas:
            return None

        nuevo = getattr(item, contador)
        disponible_nuevo = item.disponible
        return CambioStock(
            contador=contador,
            anterior=nuevo - delta,
            nuevo=nuevo,
            disponible_anterior=disponible_nuevo - efecto,
            disponible_nuevo=disponible_nuevo,
        )


@dataclass(frozen=True)
class ManejadorProducto(ManejadorStock):
    """
    Los productos de catálogo se identifican por el id del catálogo; su
    stock vive en InventarioProducto, que se crea en cero al acreditar.
    """

    def obtener(self, item_id, *, bloquear: bool = False, incluir_inactivos: bool = False, crear: bool = False):
        try:
            producto = ProductoCatalogo.objects.get(pk=item_id)
        except (ProductoCatalogo.DoesNotExist, ValueError, TypeError):
            raise ItemNoEncontrado(
                f"No existe producto de catálogo con id {item_id}.",
                tipo_item=self.tipo,
                item_id=item_id,
            )
        if not incluir_inactivos and not producto.activo:
            raise ItemNoEncontrado(
                f"'{producto.nombre}' está inactivo.",
                tipo_item=self.tipo,
                item_id=item_id,
            )

        qs = InventarioProducto.objects.select_related("producto")
        if bloquear:
            qs = qs.select_for_update()
        if crear:
            item, _created = qs.get_or_create(
                producto=producto,
                defaults={"stock": Decimal("0")},
            )
            return item
        try:
            return qs.get(producto=producto)
        except InventarioProducto.DoesNotExist:
            # Sin inventario registrado: se comporta como stock cero.
            return InventarioProducto(producto=producto, stock=Decimal("0"))

    def clave(self, item) -> int:
        return item.producto_id


MANEJADORES: dict[str, ManejadorStock] = {
    TipoItem.INGREDIENTE.value: ManejadorStock(
        TipoItem.INGREDIENTE.value, Ingrediente, "total_adquirido", "consumido"
    ),
    TipoItem.MATERIAL.value: ManejadorStock(
        TipoItem.MATERIAL.value, Material, "total_adquirido", "consumido"
    ),
    TipoItem.RECETA.value: ManejadorStock(
        TipoItem.RECETA.value, Receta, "producido", "utilizado"
    ),
    TipoItem.PRODUCTO.value: ManejadorProducto(
        TipoItem.PRODUCTO.value, InventarioProducto, "stock", "stock"
    ),
}


def obtener_manejador(tipo_item) -> ManejadorStock:
    clave = getattr(tipo_item, "value", tipo_item)
    try:
        return MANEJADORES[clave]
    except (KeyError, TypeError):
        raise ValidacionInventarioError(
            f"Tipo de item inválido: {tipo_item}.",
            tipo_item=str(tipo_item),
        )

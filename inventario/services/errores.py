from decimal import Decimal


class InventarioError(Exception):
    """
    Errores de dominio del inventario.

    Cada error lleva un mensaje legible, un código estable y un diccionario
    `datos` con el contexto estructurado (para la API y los logs).
    """

    codigo = "error_inventario"

    def __init__(self, mensaje: str, **datos):
        super().__init__(mensaje)
        self.mensaje = mensaje
        self.datos = datos

    def __str__(self):
        return self.mensaje


class ValidacionInventarioError(InventarioError):
    codigo = "validacion"


class ItemNoEncontrado(InventarioError):
    codigo = "no_encontrado"


class StockInsuficiente(InventarioError):
    codigo = "stock_insuficiente"

    def __init__(self, nombre: str, disponible: Decimal, solicitado: Decimal):
        super().__init__(
            f"Stock insuficiente de '{nombre}'. "
            f"Disponible {disponible}, solicitado {solicitado}.",
            nombre=nombre,
            disponible=str(disponible),
            solicitado=str(solicitado),
        )
        self.nombre = nombre
        self.disponible = disponible
        self.solicitado = solicitado


class InventarioInsuficiente(InventarioError):
    """Uno o más insumos de una producción no alcanzan."""

    codigo = "inventario_insuficiente"

    def __init__(self, faltantes: list):
        detalle = ", ".join(
            f"{f.nombre} (disponible {f.disponible}, requerido {f.requerido})"
            for f in faltantes
        )
        super().__init__(
            f"Inventario insuficiente: {detalle}.",
            faltantes=[f.como_dict() for f in faltantes],
        )
        self.faltantes = faltantes


class ProduccionAbortada(InventarioError):
    """
    Falló un débito después de la verificación previa. Si la producción no
    corrió en una transacción, los débitos listados quedaron aplicados.
    """

    codigo = "produccion_abortada"

    def __init__(self, mensaje: str, *, correlacion_id: str, debitos_aplicados: list, persistidos: bool):
        super().__init__(
            mensaje,
            correlacion_id=correlacion_id,
            debitos_aplicados=debitos_aplicados,
            persistidos=persistidos,
        )
        self.correlacion_id = correlacion_id
        self.debitos_aplicados = debitos_aplicados
        self.persistidos = persistidos


class TransicionInvalida(InventarioError):
    codigo = "transicion_invalida"


class MovimientoNoReversible(InventarioError):
    codigo = "no_reversible"


class NadaQueRevertir(InventarioError):
    codigo = "nada_que_revertir"

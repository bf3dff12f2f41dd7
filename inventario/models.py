from decimal import Decimal

from django.db import models
from django.utils import timezone


class TimeStampedModel(models.Model):
    """
    Modelo base abstracto con timestamps estándar.
    """
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class TipoItem(models.TextChoices):
    INGREDIENTE = "ingrediente", "Ingrediente"
    MATERIAL = "material", "Material"
    RECETA = "receta", "Receta"
    PRODUCTO = "producto", "Producto de catálogo"


class ProductoCatalogo(TimeStampedModel):
    """
    Producto terminado del catálogo. El catálogo se administra fuera del
    inventario; aquí solo se leen id, nombre y unidad.
    """
    codigo = models.CharField(max_length=50, unique=True)
    nombre = models.CharField(max_length=150)
    unidad_medida = models.CharField(max_length=20, default="unidad")
    activo = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Producto de catálogo"
        verbose_name_plural = "Productos de catálogo"
        ordering = ["nombre"]

    def __str__(self):
        return f"{self.codigo} - {self.nombre}"


class ItemInventario(TimeStampedModel):
    """
    Base para ingredientes y materiales.

    El stock nunca se descuenta del total: los consumos crecen el contador
    `consumido` y lo disponible es total_adquirido - consumido.
    """
    nombre = models.CharField(max_length=150)
    unidad_medida = models.CharField(max_length=20)
    producto_referencia = models.ForeignKey(
        ProductoCatalogo,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Producto del catálogo asociado (opcional).",
    )
    total_adquirido = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("0"),
    )
    consumido = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("0"),
    )
    activo = models.BooleanField(default=True)

    class Meta:
        abstract = True
        ordering = ["nombre"]

    def __str__(self):
        return f"{self.nombre} ({self.unidad_medida})"

    @property
    def disponible(self) -> Decimal:
        return (self.total_adquirido or Decimal("0")) - (self.consumido or Decimal("0"))


class Ingrediente(ItemInventario):
    class Meta(ItemInventario.Meta):
        verbose_name = "Ingrediente"
        verbose_name_plural = "Ingredientes"


class Material(ItemInventario):
    stock_minimo = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("0"),
        help_text="Bajo este nivel disponible el material se considera en bajo stock.",
    )

    class Meta(ItemInventario.Meta):
        verbose_name = "Material"
        verbose_name_plural = "Materiales"

    @property
    def bajo_stock(self) -> bool:
        return self.disponible <= (self.stock_minimo or Decimal("0"))


class EstadoProceso(models.TextChoices):
    BORRADOR = "borrador", "Borrador"
    EN_PROCESO = "en_proceso", "En proceso"
    PAUSADO = "pausado", "Pausado"
    COMPLETADO = "completado", "Completado"


class FaseReceta(models.TextChoices):
    PREPARADO = "preparado", "Preparado"
    INTERMEDIO = "intermedio", "Producto intermedio"
    TERMINADO = "terminado", "Producto terminado"


class Receta(TimeStampedModel):
    """
    Receta multi-fase. Lo producido se acumula en `producido` y lo que otras
    producciones consumen de ella en `utilizado`.
    """
    nombre = models.CharField(max_length=150)
    descripcion = models.TextField(blank=True)
    rendimiento_cantidad = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("1"),
        help_text="Unidades obtenidas por cada lote producido.",
    )
    rendimiento_unidad = models.CharField(max_length=20, default="unidad")

    estado_proceso = models.CharField(
        max_length=20,
        choices=EstadoProceso.choices,
        default=EstadoProceso.BORRADOR,
    )
    fase_actual = models.CharField(
        max_length=20,
        choices=FaseReceta.choices,
        default=FaseReceta.PREPARADO,
    )

    producido = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0"))
    utilizado = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0"))
    activo = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Receta"
        verbose_name_plural = "Recetas"
        ordering = ["nombre"]

    def __str__(self):
        return self.nombre

    @property
    def disponible(self) -> Decimal:
        return (self.producido or Decimal("0")) - (self.utilizado or Decimal("0"))

    @property
    def unidad_medida(self) -> str:
        return self.rendimiento_unidad


class RecetaIngrediente(TimeStampedModel):
    receta = models.ForeignKey(
        Receta,
        on_delete=models.CASCADE,
        related_name="ingredientes",
    )
    ingrediente = models.ForeignKey(
        Ingrediente,
        on_delete=models.PROTECT,
        related_name="recetas",
    )
    cantidad = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        help_text="Cantidad del ingrediente por lote.",
    )
    unidad_medida = models.CharField(max_length=20, blank=True)
    orden = models.PositiveIntegerField(default=0)
    adicional = models.BooleanField(
        default=False,
        help_text="Agregado al avanzar de fase; se elimina al reiniciar la receta.",
    )

    class Meta:
        verbose_name = "Ingrediente de receta"
        verbose_name_plural = "Ingredientes de receta"
        ordering = ["orden", "id"]

    def __str__(self):
        return f"{self.receta} → {self.ingrediente} ({self.cantidad})"


class HistorialFase(TimeStampedModel):
    receta = models.ForeignKey(
        Receta,
        on_delete=models.CASCADE,
        related_name="historial_fases",
    )
    fase = models.CharField(max_length=20, choices=FaseReceta.choices)
    fecha_inicio = models.DateTimeField(default=timezone.now)
    fecha_fin = models.DateTimeField(null=True, blank=True)
    notas = models.TextField(blank=True)
    reinicio = models.BooleanField(default=False)
    # Evento de consumo de los ingredientes adicionales de esta fase.
    correlacion_id = models.CharField(max_length=64, blank=True)
    ingredientes_agregados = models.JSONField(default=list, blank=True)

    class Meta:
        verbose_name = "Historial de fase"
        verbose_name_plural = "Historial de fases"
        ordering = ["fecha_inicio", "id"]

    def __str__(self):
        return f"{self.receta} - {self.fase}"


class InventarioProducto(TimeStampedModel):
    """
    Stock de producto terminado. Se crea en cero la primera vez que se
    acredita producción del producto.
    """
    producto = models.OneToOneField(
        ProductoCatalogo,
        on_delete=models.PROTECT,
        related_name="inventario",
    )
    stock = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0"))

    class Meta:
        verbose_name = "Inventario de producto"
        verbose_name_plural = "Inventario de productos"
        ordering = ["producto__nombre"]

    def __str__(self):
        return f"{self.producto.nombre}: {self.stock}"

    @property
    def disponible(self) -> Decimal:
        return self.stock or Decimal("0")

    @property
    def nombre(self) -> str:
        return self.producto.nombre

    @property
    def unidad_medida(self) -> str:
        return self.producto.unidad_medida

    @property
    def activo(self) -> bool:
        return self.producto.activo


class MovimientoInventario(TimeStampedModel):
    """
    Entrada del libro de movimientos. Cada movimiento afecta exactamente a un
    item (tipo_item + item_id) y registra el contador que cambió junto con
    lo disponible antes y después.

    Los movimientos de un mismo evento de producción comparten
    `correlacion_id`.
    """

    TIPO_ENTRADA = "entrada"
    TIPO_SALIDA = "salida"
    TIPO_AJUSTE = "ajuste"

    TIPO_CHOICES = [
        (TIPO_ENTRADA, "Entrada"),
        (TIPO_SALIDA, "Salida"),
        (TIPO_AJUSTE, "Ajuste"),
    ]

    SUBTIPO_MANUAL = "manual"
    SUBTIPO_PRODUCCION = "produccion"
    SUBTIPO_CONSUMO = "consumo"
    SUBTIPO_AJUSTE = "ajuste"
    SUBTIPO_RESIDUO = "residuo"
    SUBTIPO_REVERSION = "reversion"

    SUBTIPO_CHOICES = [
        (SUBTIPO_MANUAL, "Entrada manual"),
        (SUBTIPO_PRODUCCION, "Producción"),
        (SUBTIPO_CONSUMO, "Consumo"),
        (SUBTIPO_AJUSTE, "Ajuste"),
        (SUBTIPO_RESIDUO, "Residuo"),
        (SUBTIPO_REVERSION, "Reversión"),
    ]

    tipo = models.CharField(max_length=10, choices=TIPO_CHOICES)
    subtipo = models.CharField(max_length=20, choices=SUBTIPO_CHOICES)

    tipo_item = models.CharField(max_length=20, choices=TipoItem.choices)
    item_id = models.PositiveBigIntegerField()
    item_nombre = models.CharField(max_length=150, blank=True)

    cantidad = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        help_text="Cantidad del movimiento. Solo los ajustes llevan signo.",
    )
    contador = models.CharField(
        max_length=30,
        help_text="Contador del item que cambió (consumido, total_adquirido, producido...).",
    )
    cantidad_anterior = models.DecimalField(max_digits=14, decimal_places=3)
    cantidad_nueva = models.DecimalField(max_digits=14, decimal_places=3)
    disponible_anterior = models.DecimalField(max_digits=14, decimal_places=3)
    disponible_nuevo = models.DecimalField(max_digits=14, decimal_places=3)

    motivo = models.TextField(blank=True)
    operador = models.CharField(max_length=150)
    fecha = models.DateTimeField(default=timezone.now, db_index=True)
    detalles = models.JSONField(default=dict, blank=True)

    correlacion_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
    )
    revierte = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="compensaciones",
        help_text="Movimiento original que este movimiento compensa.",
    )
    revertido = models.BooleanField(default=False, db_index=True)
    revertido_en = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Movimiento de inventario"
        verbose_name_plural = "Movimientos de inventario"
        ordering = ["-fecha", "-id"]
        indexes = [
            models.Index(fields=["tipo_item", "item_id"]),
        ]

    def __str__(self):
        return f"{self.tipo} - {self.item_nombre or self.item_id} ({self.cantidad})"

    @property
    def es_reversion(self) -> bool:
        return self.subtipo == self.SUBTIPO_REVERSION


class EstadoEvento(models.TextChoices):
    PENDIENTE = "pendiente", "Pendiente"
    COMPLETADO = "completado", "Completado"
    ABORTADO = "abortado", "Abortado"
    REVERTIDO = "revertido", "Revertido"


class EventoProduccion(TimeStampedModel):
    """
    Registro de intención de un evento correlacionado (producción, consumo
    de fase, residuo). Se escribe antes de mover stock para poder
    reconciliar eventos que quedaron a medias.
    """

    TIPO_PRODUCCION = "produccion"
    TIPO_CONSUMO_FASE = "consumo_fase"
    TIPO_RESIDUO = "residuo"
    TIPO_ENTRADA_MANUAL = "entrada_manual"

    TIPO_CHOICES = [
        (TIPO_PRODUCCION, "Producción"),
        (TIPO_CONSUMO_FASE, "Consumo en fase de receta"),
        (TIPO_RESIDUO, "Residuo"),
        (TIPO_ENTRADA_MANUAL, "Entrada manual"),
    ]

    correlacion_id = models.CharField(max_length=64, unique=True)
    tipo = models.CharField(max_length=20, choices=TIPO_CHOICES)
    estado = models.CharField(
        max_length=20,
        choices=EstadoEvento.choices,
        default=EstadoEvento.PENDIENTE,
        db_index=True,
    )

    tipo_salida = models.CharField(max_length=20, choices=TipoItem.choices, blank=True)
    salida_id = models.PositiveBigIntegerField(null=True, blank=True)
    cantidad_salida = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        null=True,
        blank=True,
    )
    receta = models.ForeignKey(
        Receta,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="eventos",
    )
    operador = models.CharField(max_length=150)
    detalles = models.JSONField(default=dict, blank=True)
    finalizado_en = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Evento de producción"
        verbose_name_plural = "Eventos de producción"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.tipo} {self.correlacion_id} ({self.estado})"


class EstadoOrden(models.TextChoices):
    PLANIFICADA = "planificada", "Planificada"
    COMPLETADA = "completada", "Completada"
    CANCELADA = "cancelada", "Cancelada"
    REVERTIDA = "revertida", "Revertida"


class OrdenProduccion(TimeStampedModel):
    """
    Producción planificada: guarda salida e insumos y se ejecuta más tarde
    con producir(). Al ejecutarse queda enlazada a su evento por
    correlacion_id.
    """
    nombre = models.CharField(max_length=150)
    tipo_salida = models.CharField(max_length=20, choices=TipoItem.choices)
    salida_id = models.PositiveBigIntegerField()
    cantidad = models.DecimalField(max_digits=14, decimal_places=3)
    # [{"tipo_item": ..., "item_id": ..., "cantidad": "..."}]
    insumos = models.JSONField(default=list, blank=True)
    observaciones = models.TextField(blank=True)
    estado = models.CharField(
        max_length=20,
        choices=EstadoOrden.choices,
        default=EstadoOrden.PLANIFICADA,
        db_index=True,
    )
    operador = models.CharField(max_length=150)
    ejecutada_por = models.CharField(max_length=150, blank=True)
    fecha_ejecucion = models.DateTimeField(null=True, blank=True)
    correlacion_id = models.CharField(max_length=64, blank=True, db_index=True)

    class Meta:
        verbose_name = "Orden de producción"
        verbose_name_plural = "Órdenes de producción"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.nombre} ({self.get_estado_display()})"


class MotivoResiduo(models.TextChoices):
    VENCIDO = "vencido", "Vencido"
    DANADO = "danado", "Dañado"
    MERMA = "merma", "Merma"
    ERROR_PROCESO = "error_proceso", "Error de proceso"
    OTROS = "otros", "Otros"


class Residuo(TimeStampedModel):
    """
    Pérdida registrada de un item (vencimiento, daño, merma...).
    """
    tipo_item = models.CharField(max_length=20, choices=TipoItem.choices)
    item_id = models.PositiveBigIntegerField()
    item_nombre = models.CharField(max_length=150, blank=True)
    cantidad = models.DecimalField(max_digits=14, decimal_places=3)
    unidad_medida = models.CharField(max_length=20, blank=True)
    motivo = models.CharField(max_length=20, choices=MotivoResiduo.choices)
    observaciones = models.TextField(blank=True)
    operador = models.CharField(max_length=150)
    fecha = models.DateTimeField(default=timezone.now)
    correlacion_id = models.CharField(max_length=64, blank=True)
    activo = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Residuo"
        verbose_name_plural = "Residuos"
        ordering = ["-fecha", "-id"]

    def __str__(self):
        return f"{self.item_nombre} - {self.cantidad} ({self.get_motivo_display()})"

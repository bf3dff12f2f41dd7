from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from inventario.models import (
    EstadoEvento,
    EstadoOrden,
    EventoProduccion,
    Ingrediente,
    Material,
    MovimientoInventario,
    OrdenProduccion,
    ProductoCatalogo,
    Receta,
    Residuo,
)
from inventario.utils_roles import GRUPO_ADMINISTRADOR

User = get_user_model()


class IngredienteAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cocinero", password="testpass123")
        self.list_url = reverse("ingrediente-list")
        self.harina = Ingrediente.objects.create(
            nombre="Harina",
            unidad_medida="kg",
            total_adquirido=Decimal("10"),
        )

    def test_list_ingredientes(self):
        response = self.client.get(self.list_url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        nombres = [i["nombre"] for i in response.data]
        self.assertIn("Harina", nombres)
        self.assertEqual(Decimal(response.data[0]["disponible"]), Decimal("10"))

    def test_create_requires_authentication(self):
        response = self.client.post(self.list_url, {"nombre": "Sal", "unidad_medida": "kg"}, format="json")
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_create_con_cantidad_inicial(self):
        self.client.force_authenticate(user=self.user)
        payload = {"nombre": "Azúcar", "unidad_medida": "kg", "cantidad_inicial": "25"}

        response = self.client.post(self.list_url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        azucar = Ingrediente.objects.get(nombre="Azúcar")
        self.assertEqual(azucar.total_adquirido, Decimal("25"))
        mov = MovimientoInventario.objects.get(tipo_item="ingrediente", item_id=azucar.id)
        self.assertEqual(mov.operador, "cocinero")

    def test_nombre_duplicado_devuelve_400(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.post(self.list_url, {"nombre": "harina", "unidad_medida": "kg"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "validacion")

    def test_consumir_y_stock_insuficiente(self):
        self.client.force_authenticate(user=self.user)
        url = reverse("ingrediente-consumir", args=[self.harina.id])

        response = self.client.post(url, {"cantidad": "4", "motivo": "Pan"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Decimal(response.data["item"]["disponible"]), Decimal("6"))
        self.assertEqual(response.data["movimiento"]["tipo"], "salida")

        response = self.client.post(url, {"cantidad": "100"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "stock_insuficiente")
        self.assertEqual(response.data["datos"]["disponible"], "6.000")

    def test_entrada_y_ajuste(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.post(
            reverse("ingrediente-entrada", args=[self.harina.id]),
            {"cantidad": "5"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.post(
            reverse("ingrediente-ajuste", args=[self.harina.id]),
            {"cantidad": "-3", "motivo": "Conteo"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        self.harina.refresh_from_db()
        self.assertEqual(self.harina.disponible, Decimal("12"))

    def test_delete_desactiva(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.delete(reverse("ingrediente-detail", args=[self.harina.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.harina.refresh_from_db()
        self.assertFalse(self.harina.activo)

        response = self.client.post(
            reverse("ingrediente-consumir", args=[self.harina.id]),
            {"cantidad": "1"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_movimientos_del_item(self):
        self.client.force_authenticate(user=self.user)
        self.client.post(reverse("ingrediente-consumir", args=[self.harina.id]), {"cantidad": "1"}, format="json")

        response = self.client.get(reverse("ingrediente-movimientos", args=[self.harina.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data["movimientos"]), 1)
        self.assertEqual(Decimal(response.data["disponible"]), Decimal("9"))


class MaterialAPITests(APITestCase):
    def test_bajo_stock(self):
        Material.objects.create(
            nombre="Caja",
            unidad_medida="unidad",
            total_adquirido=Decimal("2"),
            stock_minimo=Decimal("5"),
        )
        Material.objects.create(
            nombre="Bolsa",
            unidad_medida="unidad",
            total_adquirido=Decimal("20"),
            stock_minimo=Decimal("5"),
        )

        response = self.client.get(reverse("material-bajo-stock"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([m["nombre"] for m in response.data], ["Caja"])
        self.assertTrue(response.data[0]["bajo_stock"])


class RecetaAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cocinero", password="testpass123")
        self.client.force_authenticate(user=self.user)
        self.harina = Ingrediente.objects.create(nombre="Harina", unidad_medida="kg", total_adquirido=Decimal("20"))
        self.sal = Ingrediente.objects.create(nombre="Sal", unidad_medida="kg", total_adquirido=Decimal("2"))

    def _crear_receta(self):
        payload = {
            "nombre": "Pan",
            "rendimiento_cantidad": "10",
            "lineas": [{"ingrediente_id": self.harina.id, "cantidad": "2"}],
        }
        response = self.client.post(reverse("receta-list"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        return response.data["id"]

    def test_crear_receta(self):
        receta_id = self._crear_receta()

        receta = Receta.objects.get(pk=receta_id)
        self.assertEqual(receta.ingredientes.count(), 1)
        self.assertEqual(receta.estado_proceso, "borrador")

    def test_crear_receta_sin_lineas(self):
        payload = {"nombre": "Vacía", "rendimiento_cantidad": "1", "lineas": []}
        response = self.client.post(reverse("receta-list"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_flujo_de_fases(self):
        receta_id = self._crear_receta()

        response = self.client.post(reverse("receta-iniciar", args=[receta_id]), {}, format="json")
        self.assertEqual(response.data["estado_proceso"], "en_proceso")

        response = self.client.post(
            reverse("receta-avanzar-fase", args=[receta_id]),
            {"ingredientes_adicionales": [{"ingrediente_id": self.sal.id, "cantidad": "0.5"}]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["fase_actual"], "intermedio")
        self.assertEqual(len(response.data["ingredientes"]), 2)

        response = self.client.post(reverse("receta-pausar", args=[receta_id]), {}, format="json")
        self.assertEqual(response.data["estado_proceso"], "pausado")

        response = self.client.post(reverse("receta-avanzar-fase", args=[receta_id]), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "transicion_invalida")

        response = self.client.post(reverse("receta-reiniciar", args=[receta_id]), {}, format="json")
        self.assertEqual(response.data["estado_proceso"], "borrador")
        self.sal.refresh_from_db()
        self.assertEqual(self.sal.consumido, Decimal("0"))

    def test_disponibilidad_y_producir(self):
        receta_id = self._crear_receta()

        response = self.client.get(reverse("receta-disponibilidad", args=[receta_id]), {"lotes": "20"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data["disponible"])
        self.assertEqual(response.data["faltantes"][0]["nombre"], "Harina")

        response = self.client.post(reverse("receta-producir", args=[receta_id]), {"lotes": "3"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Decimal(response.data["cantidad_producida"]), Decimal("30"))

        response = self.client.post(reverse("receta-producir", args=[receta_id]), {"lotes": "20"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "inventario_insuficiente")
        self.assertEqual(len(response.data["datos"]["faltantes"]), 1)

    def test_delete_desactiva_y_revierte(self):
        receta_id = self._crear_receta()
        self.client.post(reverse("receta-producir", args=[receta_id]), {"lotes": "2"}, format="json")

        response = self.client.delete(reverse("receta-detail", args=[receta_id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data["activo"])
        self.harina.refresh_from_db()
        self.assertEqual(self.harina.consumido, Decimal("0"))


class ProduccionAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cocinero", password="testpass123")
        self.admin = User.objects.create_user(username="jefa", password="testpass123")
        self.admin.groups.add(Group.objects.create(name=GRUPO_ADMINISTRADOR))
        self.harina = Ingrediente.objects.create(nombre="Harina", unidad_medida="kg", total_adquirido=Decimal("20"))
        self.pan = ProductoCatalogo.objects.create(codigo="PAN-01", nombre="Pan")

    def _producir(self):
        self.client.force_authenticate(user=self.user)
        payload = {
            "tipo_salida": "producto",
            "salida_id": self.pan.id,
            "cantidad": "12",
            "insumos": [{"tipo_item": "ingrediente", "item_id": self.harina.id, "cantidad": "3"}],
        }
        response = self.client.post(reverse("produccion-list"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        return response.data["correlacion_id"]

    def test_producir_y_consultar_evento(self):
        correlacion_id = self._producir()

        response = self.client.get(reverse("produccion-detail", args=[correlacion_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["estado"], EstadoEvento.COMPLETADO)

        response = self.client.get(reverse("movimiento-list"), {"correlacion_id": correlacion_id})
        self.assertEqual(response.data["total"], 2)

    def test_revertir_evento_requiere_admin(self):
        correlacion_id = self._producir()
        url = reverse("produccion-revertir", args=[correlacion_id])

        response = self.client.post(url, {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post(url, {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data["compensaciones"]), 2)
        self.assertEqual(
            EventoProduccion.objects.get(correlacion_id=correlacion_id).estado,
            EstadoEvento.REVERTIDO,
        )

        response = self.client.post(url, {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["error"], "nada_que_revertir")

    def test_reconciliar(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(reverse("produccion-reconciliar"), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["reconciliados"], [])


class OrdenProduccionAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cocinero", password="testpass123")
        self.admin = User.objects.create_user(username="jefa", password="testpass123")
        self.admin.groups.add(Group.objects.create(name=GRUPO_ADMINISTRADOR))
        self.harina = Ingrediente.objects.create(nombre="Harina", unidad_medida="kg", total_adquirido=Decimal("20"))
        self.pan = ProductoCatalogo.objects.create(codigo="PAN-01", nombre="Pan")
        self.client.force_authenticate(user=self.user)

    def _planificar(self, nombre="Pan del martes"):
        payload = {
            "nombre": nombre,
            "tipo_salida": "producto",
            "salida_id": self.pan.id,
            "cantidad": "12",
            "insumos": [{"tipo_item": "ingrediente", "item_id": self.harina.id, "cantidad": "3"}],
        }
        response = self.client.post(reverse("orden-produccion-list"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        return response.data["id"]

    def test_planificar_y_ejecutar(self):
        orden_id = self._planificar()

        response = self.client.post(reverse("orden-produccion-ejecutar", args=[orden_id]), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["estado"], EstadoOrden.COMPLETADA)
        self.assertEqual(response.data["ejecutada_por"], "cocinero")
        self.harina.refresh_from_db()
        self.assertEqual(self.harina.consumido, Decimal("3"))

        response = self.client.post(reverse("orden-produccion-ejecutar", args=[orden_id]), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "transicion_invalida")

    def test_cancelar(self):
        orden_id = self._planificar()
        url = reverse("orden-produccion-cancelar", args=[orden_id])

        response = self.client.post(url, {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(url, {"motivo": "Falta personal"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["estado"], EstadoOrden.CANCELADA)

        response = self.client.get(reverse("orden-produccion-list"), {"estado": "cancelada"})
        self.assertEqual([o["id"] for o in response.data], [orden_id])

    def test_eliminar_requiere_admin_y_revierte(self):
        orden_id = self._planificar()
        self.client.post(reverse("orden-produccion-ejecutar", args=[orden_id]), {}, format="json")
        url = reverse("orden-produccion-detail", args=[orden_id])

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.admin)
        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["inventario_revertido"])
        self.assertEqual(len(response.data["compensaciones"]), 2)
        self.assertFalse(OrdenProduccion.objects.filter(pk=orden_id).exists())
        self.harina.refresh_from_db()
        self.assertEqual(self.harina.consumido, Decimal("0"))


class MovimientoAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cocinero", password="testpass123")
        self.client.force_authenticate(user=self.user)
        self.harina = Ingrediente.objects.create(nombre="Harina", unidad_medida="kg")

    def test_revertir_entrada_manual(self):
        self.client.post(reverse("ingrediente-entrada", args=[self.harina.id]), {"cantidad": "10"}, format="json")
        movimiento = MovimientoInventario.objects.get()

        response = self.client.post(reverse("movimiento-revertir", args=[movimiento.id]), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.harina.refresh_from_db()
        self.assertEqual(self.harina.total_adquirido, Decimal("0"))

        response = self.client.get(reverse("movimiento-detail", args=[movimiento.id]))
        self.assertTrue(response.data["revertido"])
        self.assertEqual(len(response.data["compensado_por"]), 1)

    def test_revertir_salida_devuelve_409(self):
        self.client.post(reverse("ingrediente-entrada", args=[self.harina.id]), {"cantidad": "10"}, format="json")
        self.client.post(reverse("ingrediente-consumir", args=[self.harina.id]), {"cantidad": "1"}, format="json")
        salida = MovimientoInventario.objects.get(tipo=MovimientoInventario.TIPO_SALIDA)

        response = self.client.post(reverse("movimiento-revertir", args=[salida.id]), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "no_reversible")

    def test_listado_paginado_y_filtros_invalidos(self):
        for _ in range(3):
            self.client.post(reverse("ingrediente-entrada", args=[self.harina.id]), {"cantidad": "1"}, format="json")

        response = self.client.get(reverse("movimiento-list"), {"limite": 2, "pagina": 2})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["total"], 3)
        self.assertEqual(response.data["total_paginas"], 2)
        self.assertEqual(len(response.data["movimientos"]), 1)

        response = self.client.get(reverse("movimiento-list"), {"fecha_inicio": "2024-02-01", "fecha_fin": "2024-01-01"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_estadisticas(self):
        self.client.post(reverse("ingrediente-entrada", args=[self.harina.id]), {"cantidad": "4"}, format="json")

        response = self.client.get(reverse("movimiento-estadisticas"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["total_movimientos"], 1)


class ResiduoAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cocinero", password="testpass123")
        self.client.force_authenticate(user=self.user)
        self.leche = Ingrediente.objects.create(nombre="Leche", unidad_medida="l", total_adquirido=Decimal("10"))

    def test_registrar_y_eliminar_residuo(self):
        payload = {
            "tipo_item": "ingrediente",
            "item_id": self.leche.id,
            "cantidad": "2",
            "motivo": "vencido",
        }
        response = self.client.post(reverse("residuo-list"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["item_nombre"], "Leche")
        self.leche.refresh_from_db()
        self.assertEqual(self.leche.consumido, Decimal("2"))

        residuo_id = response.data["id"]
        response = self.client.delete(reverse("residuo-detail", args=[residuo_id]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.leche.refresh_from_db()
        self.assertEqual(self.leche.consumido, Decimal("0"))
        self.assertFalse(Residuo.objects.get(pk=residuo_id).activo)

        response = self.client.get(reverse("residuo-list"))
        self.assertEqual(response.data, [])

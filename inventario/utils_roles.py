from dataclasses import dataclass

from rest_framework import permissions

ROL_USER = "user"
ROL_ADMIN = "admin"
ROL_SUPER_ADMIN = "super_admin"

# Grupo de Django que otorga rol admin sobre el inventario
GRUPO_ADMINISTRADOR = "Administrador"


@dataclass(frozen=True)
class ContextoActor:
    """Quién ejecuta una operación de inventario."""

    actor_id: str
    rol: str

    @property
    def es_admin(self) -> bool:
        return self.rol in (ROL_ADMIN, ROL_SUPER_ADMIN)


def obtener_rol_usuario(user) -> str | None:
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return ROL_SUPER_ADMIN
    if user.is_staff or user.groups.filter(name=GRUPO_ADMINISTRADOR).exists():
        return ROL_ADMIN
    return ROL_USER


def contexto_actor(user) -> ContextoActor:
    return ContextoActor(actor_id=user.get_username(), rol=obtener_rol_usuario(user))


def usuario_es_admin(user) -> bool:
    return obtener_rol_usuario(user) in (ROL_ADMIN, ROL_SUPER_ADMIN)


class EsAdministradorInventario(permissions.BasePermission):
    """
    Lectura para cualquier usuario autenticado; escritura solo admin o
    super_admin.
    """

    message = "Se requiere rol admin para esta operación."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return usuario_es_admin(request.user)

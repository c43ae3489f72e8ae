from __future__ import annotations


class CmsError(RuntimeError):
    pass


class AdapterContractError(CmsError):
    """DB adapter or session store is missing a required method. Fatal at startup."""


class AclResourceCollision(CmsError):
    def __init__(self, resource: str, module_name: str | None = None) -> None:
        self.resource = resource
        self.module_name = module_name
        where = f" (module '{module_name}')" if module_name else ""
        super().__init__(f"ACL resource '{resource}' is already described{where}, make sure it has a unique name")


class RouteActionError(CmsError):
    """Route action cannot be resolved to a callable. Fatal at startup."""


class ModuleConfigError(CmsError):
    """Module config has an invalid shape."""


class ModuleConfigNotFound(CmsError):
    pass


class RegistryFrozen(CmsError):
    pass


class TemplateNotFound(CmsError):
    def __init__(self, name: str, tried: list[str] | None = None) -> None:
        self.name = name
        self.tried = tried or []
        super().__init__(f"Template '{name}' was not found")

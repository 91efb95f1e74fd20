from dependency_injector.wiring import Provide, inject
from fastapi import Depends

from costbasis.container import Container
from costbasis.portfolio.service import PortfolioService


@inject
def get_portfolio_service(
    service: PortfolioService = Depends(Provide[Container.portfolio_service]),
) -> PortfolioService:
    return service

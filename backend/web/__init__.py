"""Web adapter: FastAPI app factory, request mediation and routers."""

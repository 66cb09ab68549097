# npk_calc/main.py
from fastapi import FastAPI

from npk_calc import __version__
from npk_calc.routers import calculation

app = FastAPI(title="NPK Nutrient Solution Calculator", version=__version__)


@app.get("/")
def root():
    return {"status": "Backend is running!"}


app.include_router(calculation.router)

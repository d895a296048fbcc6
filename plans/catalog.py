"""
plans/catalog.py -- Default crop catalog.

Common Indian field, plantation and horticulture crops with their usual
season and growing duration in days. seed_crops() in plans/store.py inserts
any entry whose name is not already present, so running it repeatedly is
safe.
"""

from plans.models import Crop

# (name, season, description, duration_days)
_DEFAULT_CROPS: list[tuple[str, str, str, int]] = [
    ("Wheat", "Winter", "Staple cereal crop of India", 120),
    ("Rice", "Summer", "Main kharif cereal crop", 150),
    ("Maize", "Summer", "Cereal crop used for food and fodder", 110),
    ("Barley", "Winter", "Cereal crop for malt and food", 90),
    ("Jowar (Sorghum)", "Summer", "Millet crop grown in dry areas", 120),
    ("Bajra (Pearl Millet)", "Summer", "Millet crop drought-resistant", 100),
    ("Ragi (Finger Millet)", "Summer", "Millet crop rich in calcium", 110),
    ("Chickpea (Chana)", "Winter", "Important pulse crop", 120),
    ("Pigeon Pea (Arhar/Tur)", "Summer", "Pulse crop used in dal", 150),
    ("Green Gram (Moong)", "Summer", "Short-duration pulse crop", 70),
    ("Black Gram (Urad)", "Summer", "Pulse crop used in dals/idli", 90),
    ("Lentil (Masoor)", "Winter", "Winter pulse crop", 100),
    ("Rajma (Kidney Beans)", "Summer", "Pulse crop popular in north India", 120),
    ("Groundnut", "Summer", "Major oilseed crop", 110),
    ("Mustard", "Winter", "Winter oilseed crop", 130),
    ("Soybean", "Summer", "Kharif oilseed crop", 120),
    ("Sunflower", "Summer", "Oilseed crop grown widely", 100),
    ("Sesame (Til)", "Summer", "Oilseed crop for edible oil", 90),
    ("Castor Seed", "Summer", "Industrial oil crop", 150),
    ("Sugarcane", "Summer", "Main cash crop for sugar", 365),
    ("Cotton", "Summer", "Cash crop for textile", 180),
    ("Jute", "Summer", "Fibre crop for gunny bags", 150),
    ("Tobacco", "Winter", "Commercial crop in Andhra & Gujarat", 150),
    ("Tea", "Summer", "Perennial plantation crop", 365),
    ("Coffee", "Summer", "Plantation crop grown in Karnataka", 365),
    ("Rubber", "Summer", "Plantation crop in Kerala", 365),
    ("Potato", "Winter", "Root vegetable widely consumed", 90),
    ("Onion", "Winter", "Major vegetable crop", 120),
    ("Tomato", "Summer", "Vegetable crop grown year-round", 90),
    ("Brinjal (Eggplant)", "Summer", "Vegetable crop grown across India", 100),
    ("Okra (Ladyfinger)", "Summer", "Popular vegetable crop", 60),
    ("Cabbage", "Winter", "Leafy vegetable crop", 90),
    ("Cauliflower", "Winter", "Leafy vegetable crop", 100),
    ("Carrot", "Winter", "Root vegetable", 80),
    ("Radish", "Winter", "Root vegetable crop", 50),
    ("Cucumber", "Summer", "Vine vegetable crop", 70),
    ("Pumpkin", "Summer", "Vine vegetable crop", 120),
    ("Bitter Gourd (Karela)", "Summer", "Vegetable crop", 70),
    ("Bottle Gourd (Lauki)", "Summer", "Vegetable crop", 90),
    ("Spinach", "Winter", "Leafy green vegetable", 45),
    ("Fenugreek (Methi)", "Winter", "Leafy green vegetable", 60),
    ("Coriander", "Winter", "Leafy herb crop", 40),
    ("Mango", "Summer", "National fruit of India", 365),
    ("Banana", "Summer", "Year-round fruit crop", 365),
    ("Guava", "Winter", "Fruit crop rich in Vitamin C", 365),
    ("Papaya", "Summer", "Fruit crop grown year-round", 365),
    ("Pomegranate", "Summer", "Fruit crop rich in antioxidants", 365),
    ("Apple", "Winter", "Temperate fruit crop grown in Kashmir/Himachal", 365),
    ("Grapes", "Summer", "Fruit crop grown in Maharashtra", 365),
    ("Orange", "Winter", "Citrus fruit crop", 365),
    ("Litchi", "Summer", "Fruit crop grown in Bihar", 365),
    ("Pineapple", "Summer", "Tropical fruit crop", 365),
]


def default_crops() -> list[Crop]:
    return [Crop(name=n, season=s, description=d, duration=days) for n, s, d, days in _DEFAULT_CROPS]

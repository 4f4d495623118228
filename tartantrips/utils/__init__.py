"""TartanTrips Utilities Package"""

"""Sample data for a fresh registry."""
import logging

logger = logging.getLogger(__name__)

PATIENTS = [
    {
        "firstName": "John",
        "lastName": "Smith",
        "dob": "1990-05-15",
        "gender": "male",
        "email": "john.smith@example.com",
        "phone": "(555) 123-4567",
        "address": "123 Main St, Anytown, USA",
        "insuranceProvider": "Blue Cross",
        "medicalHistory": "No significant medical history.",
    },
    {
        "firstName": "Jane",
        "lastName": "Doe",
        "dob": "1985-08-23",
        "gender": "female",
        "email": "jane.doe@example.com",
        "phone": "(555) 987-6543",
        "address": "456 Oak Ave, Somewhere, USA",
        "insuranceProvider": "Aetna",
        "medicalHistory": "Allergic to penicillin.",
    },
    {
        "firstName": "Robert",
        "lastName": "Johnson",
        "dob": "1978-12-10",
        "gender": "male",
        "email": "robert.johnson@example.com",
        "phone": "(555) 456-7890",
        "address": "789 Pine St, Elsewhere, USA",
        "insuranceProvider": "Cigna",
        "medicalHistory": "Hypertension, Type 2 diabetes.",
    },
    {
        "firstName": "Sarah",
        "lastName": "Wilson",
        "dob": "1992-03-07",
        "gender": "female",
        "email": "sarah.wilson@example.com",
        "phone": "(555) 234-5678",
        "address": "321 Elm St, Nowhere, USA",
        "insuranceProvider": "UnitedHealthcare",
        "medicalHistory": "Mild asthma, seasonal allergies.",
    },
    {
        "firstName": "Michael",
        "lastName": "Brown",
        "dob": "1972-09-28",
        "gender": "male",
        "email": "michael.brown@example.com",
        "phone": "(555) 876-5432",
        "address": "654 Maple Ave, Anyplace, USA",
        "insuranceProvider": "Medicare",
        "medicalHistory": "Knee replacement (right) in 2018.",
    },
]

# by position in PATIENTS
ALLERGIES = {
    0: [("Penicillin", "High"), ("Peanuts", "Moderate")],
    1: [("Shellfish", "High"), ("Latex", "Mild")],
    3: [("Dust", "Moderate"), ("Pollen", "Moderate"), ("Pet Dander", "Mild")],
}

SAVED_QUERIES = [
    {
        "name": "All Patients",
        "query": "SELECT * FROM patients ORDER BY last_name ASC;",
        "description": "Retrieves all patients sorted by last name",
    },
    {
        "name": "Patients with Allergies",
        "query": "SELECT p.id, p.first_name, p.last_name, a.name as allergy,"
        " a.severity FROM patients p JOIN allergies a ON p.id = a.patient_id"
        " ORDER BY p.last_name ASC;",
        "description": "Lists all patients with their allergies",
    },
    {
        "name": "Patient Count by Gender",
        "query": "SELECT gender, COUNT(*) as count FROM patients GROUP BY gender;",
        "description": "Shows patient distribution by gender",
    },
]


def seed(store) -> int:
    """Put the sample data in store, unless it already has patients.

    Return the number of patients inserted."""
    if store.get_patients():
        logger.info("Store already contains data, skipping seed")
        return 0

    for idx, fields in enumerate(PATIENTS):
        patient = store.create_patient(fields)
        for name, severity in ALLERGIES.get(idx, []):
            store.create_allergy(
                {"patientId": patient.id, "name": name, "severity": severity}
            )

    for fields in SAVED_QUERIES:
        store.create_saved_query(fields)

    logger.info(f"Seeded store with {len(PATIENTS)} patients")
    return len(PATIENTS)
